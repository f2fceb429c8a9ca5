from zoneinfo import ZoneInfo

from pydantic import BaseModel

from utils import auth, env, log
from utils.env import EnvVarSpec

logger = log.get_logger(__name__)

#### Types ####

class HttpServerConf(BaseModel):
    host: str
    port: int
    autoreload: bool

class ExpirySweepConf(BaseModel):
    enabled: bool
    timezone: str
    hour: int
    minute: int

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

#### Env Vars ####

## Auth ##

AUTH_OIDC_JWK_URL = EnvVarSpec(id="AUTH_OIDC_JWK_URL", is_optional=True)
AUTH_OIDC_AUDIENCE = EnvVarSpec(id="AUTH_OIDC_AUDIENCE", is_optional=True)
AUTH_OIDC_ISSUER = EnvVarSpec(id="AUTH_OIDC_ISSUER", is_optional=True)
AUTH_JWT_SECRET = EnvVarSpec(id="AUTH_JWT_SECRET", is_optional=True, is_secret=True)

## Logging ##

LOG_LEVEL = EnvVarSpec(id="LOG_LEVEL", default="INFO")

ENVIRONMENT = EnvVarSpec(id="ENVIRONMENT", default="development")

## HTTP ##

HTTP_HOST = EnvVarSpec(id="HTTP_HOST", default="0.0.0.0")

HTTP_PORT = EnvVarSpec(id="HTTP_PORT", default="8000", parse=int, type=(int, ...))

HTTP_AUTORELOAD = EnvVarSpec(
    id="HTTP_AUTORELOAD",
    parse=lambda x: x.lower() == "true",
    default="false",
    type=(bool, ...),
)

HTTP_EXPOSE_ERRORS = EnvVarSpec(
    id="HTTP_EXPOSE_ERRORS",
    default="false",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

## Storage ##

STORE_BACKEND = EnvVarSpec(
    id="STORE_BACKEND",
    default="couchbase",
    parse=lambda x: x.lower(),
)

## Expiry sweep ##

EXPIRY_SWEEP_ENABLED = EnvVarSpec(
    id="EXPIRY_SWEEP_ENABLED",
    default="true",
    parse=lambda x: x.lower() == "true",
    type=(bool, ...),
)

EXPIRY_SWEEP_TIMEZONE = EnvVarSpec(id="EXPIRY_SWEEP_TIMEZONE", default="UTC")

EXPIRY_SWEEP_HOUR = EnvVarSpec(
    id="EXPIRY_SWEEP_HOUR",
    default="0",
    parse=int,
    type=(int, ...),
)

EXPIRY_SWEEP_MINUTE = EnvVarSpec(
    id="EXPIRY_SWEEP_MINUTE",
    default="0",
    parse=int,
    type=(int, ...),
)

#### Validation ####
VALIDATED_ENV_VARS = [
    AUTH_OIDC_JWK_URL,
    AUTH_OIDC_AUDIENCE,
    AUTH_OIDC_ISSUER,
    AUTH_JWT_SECRET,
    HTTP_AUTORELOAD,
    HTTP_EXPOSE_ERRORS,
    HTTP_PORT,
    LOG_LEVEL,
    ENVIRONMENT,
    STORE_BACKEND,
    EXPIRY_SWEEP_ENABLED,
    EXPIRY_SWEEP_TIMEZONE,
    EXPIRY_SWEEP_HOUR,
    EXPIRY_SWEEP_MINUTE,
]

STORE_BACKENDS = ("couchbase", "memory")

def validate() -> bool:
    ok = env.validate(VALIDATED_ENV_VARS)

    backend = get_store_backend()
    if backend not in STORE_BACKENDS:
        logger.error(f"STORE_BACKEND '{backend}' is invalid. Must be one of {STORE_BACKENDS}")
        ok = False

    if not (env.parse(AUTH_OIDC_JWK_URL) or env.parse(AUTH_JWT_SECRET)):
        logger.error("Either AUTH_OIDC_JWK_URL or AUTH_JWT_SECRET must be set")
        ok = False

    try:
        sweep = get_expiry_sweep_conf()
        ZoneInfo(sweep.timezone)  # raises on unknown zones
        if not (0 <= sweep.hour < 24 and 0 <= sweep.minute < 60):
            logger.error(f"Invalid expiry sweep time {sweep.hour}:{sweep.minute}")
            ok = False
    except Exception as e:
        logger.error(f"Invalid expiry sweep configuration: {e}")
        ok = False

    return ok

#### Getters ####

def get_auth_config() -> auth.AuthClientConfig:
    """Get authentication configuration."""
    return auth.AuthClientConfig(
        jwk_url=env.parse(AUTH_OIDC_JWK_URL),
        audience=env.parse(AUTH_OIDC_AUDIENCE),
        issuer=env.parse(AUTH_OIDC_ISSUER),
        secret=env.parse(AUTH_JWT_SECRET),
    )

def get_http_expose_errors() -> bool:
    return env.parse(HTTP_EXPOSE_ERRORS)

def get_log_level() -> str:
    return env.parse(LOG_LEVEL)

def get_environment() -> str:
    return env.parse(ENVIRONMENT)

def get_store_backend() -> str:
    return env.parse(STORE_BACKEND)

def get_http_conf() -> HttpServerConf:
    return HttpServerConf(
        host=env.parse(HTTP_HOST),
        port=env.parse(HTTP_PORT),
        autoreload=env.parse(HTTP_AUTORELOAD),
    )

def get_expiry_sweep_conf() -> ExpirySweepConf:
    return ExpirySweepConf(
        enabled=env.parse(EXPIRY_SWEEP_ENABLED),
        timezone=env.parse(EXPIRY_SWEEP_TIMEZONE),
        hour=env.parse(EXPIRY_SWEEP_HOUR),
        minute=env.parse(EXPIRY_SWEEP_MINUTE),
    )
