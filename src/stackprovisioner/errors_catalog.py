"""Actionable error catalog for stackprovisioner."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "os_release_missing": {
        "what": "Could not detect the distribution: {path} is missing or unreadable.",
        "next": "Run on Ubuntu 24.04 or Debian 13 where `/etc/os-release` is present.",
    },
    "unsupported_distro": {
        "what": "Unsupported distribution: {distro}.",
        "next": "Use Ubuntu 24.04 or Debian 13 (trixie).",
    },
    "running_as_root": {
        "what": "This tool must not be run as root.",
        "next": "Run it as a regular user; sudo is invoked only where needed.",
    },
    "sudo_missing": {
        "what": "sudo is not installed.",
        "next": "Install sudo and add your user to the sudo group, then retry.",
    },
    "dotnet_verification_failed": {
        "what": ".NET installation could not be verified with `{command}`.",
        "next": "Inspect the installer output above, or retry with `--repo-method`.",
    },
    "postgres_verification_failed": {
        "what": "PostgreSQL did not answer `SELECT version()`.",
        "next": "Check `systemctl status postgresql` and the cluster logs under /var/log/postgresql.",
    },
    "project_build_failed": {
        "what": "The sample project in {path} failed to build.",
        "next": "Run `dotnet build` in that directory to see the compiler errors.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
