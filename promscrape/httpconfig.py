"""Load a Prometheus-style HTTP client configuration file into a requests session."""
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
import logging
import os

import requests
from requests.auth import HTTPBasicAuth

from promscrape.errors import HTTPConfigError

logger = logging.getLogger(__name__)

USER_AGENT = "promscrape"


class BasicAuth(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = ""
    password: Optional[str] = None
    password_file: Optional[str] = None


class Authorization(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str = "Bearer"
    credentials: Optional[str] = None
    credentials_file: Optional[str] = None


class TLSConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ca_file: Optional[str] = None
    cert_file: Optional[str] = None
    key_file: Optional[str] = None
    server_name: Optional[str] = None
    insecure_skip_verify: bool = False


class HTTPClientConfig(BaseModel):
    """Subset of the Prometheus HTTP client options that a scrape needs."""
    model_config = ConfigDict(extra="forbid")

    basic_auth: Optional[BasicAuth] = None
    authorization: Optional[Authorization] = None
    bearer_token: Optional[str] = None
    bearer_token_file: Optional[str] = None
    tls_config: TLSConfig = Field(default_factory=TLSConfig)
    proxy_url: Optional[str] = None
    follow_redirects: bool = True

    @model_validator(mode='after')
    def validate_single_auth(self):
        """Only one way of authenticating may be configured."""
        configured = [
            name for name, value in (
                ("basic_auth", self.basic_auth),
                ("authorization", self.authorization),
                ("bearer_token", self.bearer_token),
                ("bearer_token_file", self.bearer_token_file),
            ) if value
        ]
        if len(configured) > 1:
            raise ValueError(f"at most one of {', '.join(configured)} must be configured")
        return self


def _read_secret(path: str) -> str:
    try:
        with open(path, 'r') as f:
            return f.read().strip()
    except OSError as e:
        raise HTTPConfigError(f"unable to read secret file {path}: {e}") from e


def load_http_config(config_path: str) -> HTTPClientConfig:
    """Load and validate an HTTP client configuration YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise HTTPConfigError(f"HTTP configuration file not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}
        return HTTPClientConfig(**raw_config)
    except HTTPConfigError:
        raise
    except Exception as e:
        raise HTTPConfigError(f"failed to load HTTP configuration file {config_path}: {e}") from e


def new_session(config: HTTPClientConfig) -> requests.Session:
    """Build a requests session that applies the configured auth, TLS and proxy settings."""
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT

    if config.basic_auth:
        password = config.basic_auth.password
        if config.basic_auth.password_file:
            password = _read_secret(config.basic_auth.password_file)
        session.auth = HTTPBasicAuth(config.basic_auth.username, password or "")

    token = config.bearer_token
    scheme = "Bearer"
    if config.bearer_token_file:
        token = _read_secret(config.bearer_token_file)
    if config.authorization:
        scheme = config.authorization.type
        token = config.authorization.credentials
        if config.authorization.credentials_file:
            token = _read_secret(config.authorization.credentials_file)
    if token:
        session.headers["Authorization"] = f"{scheme} {token}"

    tls = config.tls_config
    if tls.insecure_skip_verify:
        session.verify = False
    elif tls.ca_file:
        session.verify = tls.ca_file
    if tls.cert_file and tls.key_file:
        session.cert = (tls.cert_file, tls.key_file)
    elif tls.cert_file:
        session.cert = tls.cert_file
    if tls.server_name:
        logger.warning("tls_config.server_name is not supported and will be ignored")

    if config.proxy_url:
        session.proxies = {"http": config.proxy_url, "https": config.proxy_url}

    if not config.follow_redirects:
        session.max_redirects = 0

    return session

