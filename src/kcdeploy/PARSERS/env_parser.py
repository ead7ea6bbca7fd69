# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Loading of deployment settings from .env files and the process environment.
"""
import io
import logging
import os
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

from ..MODELS.deploy_config import DeployConfig

logger = logging.getLogger(__name__)


class EnvParser:
    """
    Reads env files into plain dictionaries and builds a DeployConfig from them.
    """
    @staticmethod
    def parse(env_path: str) -> Dict[str, Optional[str]]:
        """
        Parses an env file from a path.

        Args:
            env_path (str): Path to the env file.

        Returns:
            Dict[str, Optional[str]]: Keys and values; keys without '=' map to None.
        """
        if not os.path.exists(env_path):
            raise FileNotFoundError(env_path)
        return dict(dotenv_values(env_path))

    @staticmethod
    def parse_from_string(content: str) -> Dict[str, Optional[str]]:
        """
        Parses env file content from a string. Quotes, comments and
        ``export`` prefixes follow python-dotenv's rules.
        """
        return dict(dotenv_values(stream=io.StringIO(content)))

    @staticmethod
    def recognized_keys() -> set:
        return {field.alias for field in DeployConfig.model_fields.values() if field.alias}

    @classmethod
    def merge_environment(cls,
                          file_values: Mapping[str, Optional[str]],
                          environ: Optional[Mapping[str, str]] = None) -> Dict[str, Optional[str]]:
        """
        Overlays recognized keys from the process environment on top of file values.

        :param file_values: Values read from the env file.
        :param environ: Process environment, defaults to os.environ.
        :return: Merged mapping.
        """
        environ = os.environ if environ is None else environ
        merged = dict(file_values)
        for key in cls.recognized_keys():
            if key in environ:
                if key in merged:
                    logger.debug("%s overridden from process environment", key)
                merged[key] = environ[key]
        return merged

    @classmethod
    def load_config(cls, env_path: Optional[str] = None,
                    environ: Optional[Mapping[str, str]] = None) -> DeployConfig:
        """
        Reads the env file (if any), merges the environment and validates the result.

        :param env_path: Path to the env file, or None to use the environment only.
        :param environ: Process environment, defaults to os.environ.
        :return: The validated configuration.
        """
        file_values: Dict[str, Optional[str]] = {}
        if env_path:
            file_values = cls.parse(env_path)
            logger.debug("Loaded %d keys from %s", len(file_values), env_path)
        return DeployConfig.from_mapping(cls.merge_environment(file_values, environ))
