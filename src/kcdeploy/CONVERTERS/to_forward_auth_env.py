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
Converters for generating forward-auth env files from a registered OIDC client.
"""
import logging
import os
from datetime import datetime, timezone
from jinja2 import Template

logger = logging.getLogger(__name__)

FORWARD_AUTH_TEMPLATE = """\
# Forward auth configuration for {{ client_id }}
# Generated on {{ generated_at }}

# OIDC provider
PROVIDERS_OIDC_ISSUER_URL={{ issuer }}
PROVIDERS_OIDC_CLIENT_ID={{ client_id }}
PROVIDERS_OIDC_CLIENT_SECRET={{ client_secret }}

# Forward auth
SECRET={{ cookie_secret }}
AUTH_HOST={{ auth_host }}
COOKIE_DOMAIN={{ cookie_domain }}

# Headers passed to the protected application
HEADERS_USERNAME=X-Auth-Email
HEADERS_GROUPS=X-Auth-Groups
HEADERS_NAME=X-Auth-Name

URL_PATH=/_oauth
LOGOUT_REDIRECT={{ issuer }}/protocol/openid-connect/logout

LIFETIME={{ lifetime }}
LOG_LEVEL=info
"""


class ForwardAuthEnvConverter:
    """
    Renders the env file a Traefik forward-auth middleware reads.
    """

    def __init__(self, issuer: str, client_id: str, client_secret: str, cookie_secret: str,
                 auth_host: str, cookie_domain: str, lifetime: int = 86400):
        """
        :param issuer: Realm issuer URL.
        :param client_id: OIDC client id.
        :param client_secret: OIDC client secret.
        :param cookie_secret: Secret used to sign the auth cookie.
        :param auth_host: Host serving the /_oauth callback.
        :param cookie_domain: Domain the auth cookie is scoped to.
        :param lifetime: Session lifetime in seconds.
        """
        self.values = dict(
            issuer=issuer, client_id=client_id, client_secret=client_secret,
            cookie_secret=cookie_secret, auth_host=auth_host,
            cookie_domain=cookie_domain, lifetime=lifetime,
        )
        self.template = Template(FORWARD_AUTH_TEMPLATE)

    def render(self) -> str:
        generated_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        return self.template.render(generated_at=generated_at, **self.values)

    def convert(self, output_path: str) -> str:
        """
        Writes the env file with owner-only permissions.

        :param output_path: Destination file.
        :return: The path written.
        """
        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fd = os.open(output_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(self.render())
        logger.info("Forward auth configuration saved to %s", output_path)
        return output_path
