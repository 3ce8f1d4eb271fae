"""Transport configuration registry: the ordered chain of SMTP profiles to try."""

from typing import Dict, Iterable, List, Tuple

from ...core.exceptions import InvalidConfigurationError
from ...core.models.email import TransportProfile
from ..logging.service import get_logger


logger = get_logger("email")


# Well-known provider endpoints, keyed by EMAIL_SERVICE
SERVICE_PRESETS: Dict[str, Dict[str, object]] = {
    "gmail": {"host": "smtp.gmail.com", "port": 465, "secure": True},
    "outlook": {"host": "smtp.office365.com", "port": 587, "secure": False, "require_tls": True},
    "office365": {"host": "smtp.office365.com", "port": 587, "secure": False, "require_tls": True},
    "yahoo": {"host": "smtp.mail.yahoo.com", "port": 465, "secure": True},
    "zoho": {"host": "smtp.zoho.com", "port": 465, "secure": True},
}

STARTTLS_PORT = 587


class TransportRegistry:
    """Ordered, immutable collection of transport profiles.

    Order is priority: the delivery service walks the profiles front to back.
    Reconfiguring means building a new registry.
    """

    def __init__(self, profiles: Iterable[TransportProfile]):
        self._profiles: Tuple[TransportProfile, ...] = tuple(profiles)

        names = [p.name for p in self._profiles]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise InvalidConfigurationError(
                "EMAIL_PROFILES", ",".join(names), f"duplicate profile names: {', '.join(duplicates)}"
            )

    def profiles(self) -> Tuple[TransportProfile, ...]:
        return self._profiles

    def names(self) -> List[str]:
        return [p.name for p in self._profiles]

    def __len__(self) -> int:
        return len(self._profiles)

    def __iter__(self):
        return iter(self._profiles)

    @classmethod
    def from_config(cls, email_config) -> "TransportRegistry":
        """Build the default chain from an ``EmailConfig``.

        Profiles are ``primary``, ``starttls``, ``service`` and
        ``service-relaxed-tls``; ``email_config.profiles`` selects and orders
        them. Profiles that would open the same kind of connection collapse
        to the first occurrence.
        """
        if email_config.transport == "mock":
            options = {"fail_mode": email_config.mock_fail_mode} if email_config.mock_fail_mode else {}
            return cls([TransportProfile(name="mock", kind="mock", timeout=email_config.send_timeout, options=options)])

        candidates = {profile.name: profile for profile in _default_profiles(email_config)}

        unknown = [name for name in email_config.profiles if name not in candidates]
        if unknown:
            raise InvalidConfigurationError(
                "EMAIL_PROFILES",
                ",".join(email_config.profiles),
                f"unknown profile names: {', '.join(unknown)} (known: {', '.join(candidates)})"
            )

        selected: List[TransportProfile] = []
        seen = {}
        for name in email_config.profiles:
            profile = candidates[name]
            signature = profile.signature()
            if signature in seen:
                logger.debug(
                    f"Transport profile {name} duplicates {seen[signature]}, skipping",
                    extra={"profile": name, "duplicate_of": seen[signature]}
                )
                continue
            if name in {p.name for p in selected}:
                continue
            seen[signature] = name
            selected.append(profile)

        return cls(selected)


def _default_profiles(email_config) -> List[TransportProfile]:
    """All candidate profiles derivable from the email settings, in default order."""
    common = dict(
        username=email_config.smtp_username or None,
        password=email_config.smtp_password or None,
        timeout=email_config.send_timeout,
        pool=True,
        max_connections=email_config.pool_max_connections,
        max_messages=email_config.pool_max_messages,
    )

    preset = SERVICE_PRESETS.get(email_config.service, {
        "host": email_config.smtp_host,
        "port": email_config.smtp_port,
        "secure": email_config.smtp_secure,
    })

    return [
        TransportProfile(
            name="primary",
            host=email_config.smtp_host,
            port=email_config.smtp_port,
            secure=email_config.smtp_secure,
            **common
        ),
        TransportProfile(
            name="starttls",
            host=email_config.smtp_host,
            port=STARTTLS_PORT,
            secure=False,
            require_tls=True,
            **common
        ),
        TransportProfile(
            name="service",
            host=preset["host"],
            port=preset["port"],
            secure=preset.get("secure", False),
            require_tls=preset.get("require_tls", False),
            **common
        ),
        TransportProfile(
            name="service-relaxed-tls",
            host=preset["host"],
            port=preset["port"],
            secure=preset.get("secure", False),
            require_tls=preset.get("require_tls", False),
            verify_certificates=False,
            **common
        ),
    ]
