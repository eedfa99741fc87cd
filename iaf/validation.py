"""
Input validation helpers.

The platform API rejects bad input up front; the reconcilers re-check the
fields they copy into child resources because CRs can be edited directly.
"""
import re

from iaf.models import ApplicationSpec

# Kubernetes DNS label: lowercase alphanumerics and hyphens, alphanumeric start
APP_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")
# POSIX environment variable name
ENV_VAR_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

RESERVED_PREFIXES = ("kube-", "iaf-")


def validate_app_name(name: str):
    """Raise ValueError if name is not a usable application/service name."""
    if not name:
        raise ValueError("name must not be empty")
    if len(name) > 63:
        raise ValueError(f"name must be 63 characters or fewer (got {len(name)})")
    if not APP_NAME_RE.match(name):
        raise ValueError(
            f"name {name!r} is invalid: must be lowercase alphanumeric and hyphens, "
            "starting with a letter or digit"
        )
    for prefix in RESERVED_PREFIXES:
        if name.startswith(prefix):
            raise ValueError(f"name must not start with the reserved prefix {prefix!r}")


def validate_env_var_name(name: str):
    """Raise ValueError if name is not a valid environment variable name."""
    if not name:
        raise ValueError("env var name must not be empty")
    if not ENV_VAR_RE.match(name):
        raise ValueError(
            f"env var name {name!r} is invalid: must start with a letter or underscore "
            "and contain only letters, digits, and underscores"
        )


def validate_image_source(spec: ApplicationSpec):
    """Raise ValueError unless some image source is usable (a literal image wins)."""
    if spec.image:
        return
    if not spec.has_build_source:
        raise ValueError("one of image, git.url or blob is required")
