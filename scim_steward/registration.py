"""Self-service registration form configuration.

Administrators pick which User attributes the registration form asks for
beyond the required ones, and whether the form shows a captcha.  Attribute
names are checked against the schema registry, so extension attributes
become selectable as soon as their schema is bound to the User type.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from .outcomes import INVALID_VALUE, ClientError, Outcome, ServerError, Success
from .registry import SchemaRegistry
from .schemas import READ_ONLY

logger = logging.getLogger(__name__)


class RegistrationParam(Enum):
    """Parameters accepted by a registration configuration request."""

    CAPTCHA_DISABLED = "captchaDisabled"
    SELECTED_ATTRIBUTES = "selectedAttributes"

    @classmethod
    def is_standard(cls, name: Optional[str]) -> bool:
        if not name or not name.strip():
            return False
        return any(param.value.lower() == name.lower() for param in cls)

    def __str__(self):
        return self.value


class RegistrationConfiguration:
    def __init__(self, captcha_disabled: bool = False, additional_attributes: Optional[List[str]] = None):
        self.captcha_disabled = captcha_disabled
        self.additional_attributes = list(additional_attributes or [])

    def __eq__(self, other):
        return (isinstance(other, RegistrationConfiguration)
                and self.captcha_disabled == other.captcha_disabled
                and self.additional_attributes == other.additional_attributes)

    def __repr__(self):
        return (f"RegistrationConfiguration(captcha_disabled={self.captcha_disabled!r}, "
                f"additional_attributes={self.additional_attributes!r})")


class ConfigurationStore(Protocol):
    def load(self) -> Optional[RegistrationConfiguration]: ...

    def save(self, config: RegistrationConfiguration) -> None: ...


class InMemoryConfigurationStore:
    def __init__(self, config: Optional[RegistrationConfiguration] = None):
        self._config = config

    def load(self) -> Optional[RegistrationConfiguration]:
        return self._config

    def save(self, config: RegistrationConfiguration) -> None:
        self._config = config


def user_attribute_names(registry: SchemaRegistry, resource_type: str = "User") -> List[str]:
    """Client-writable core attribute names, then ``<urn>:<name>`` for every bound extension."""
    names = [attr_def.name for attr_def in registry.core_schema_for(resource_type).attributes
             if attr_def.mutability != READ_ONLY]
    for binding in registry.extensions_for(resource_type):
        schema = registry.lookup(binding.schema_uri)
        names.extend(f"{schema.id}:{attr_def.name}" for attr_def in schema.attributes
                     if attr_def.mutability != READ_ONLY)
    return names


def find_attributes_for_pattern(registry: SchemaRegistry, selected: List[str],
                                pattern: Optional[str] = None, resource_type: str = "User") -> List[str]:
    """Attributes whose name contains ``pattern`` (all of them when empty),
    followed by any selected attribute the search left out."""
    names = user_attribute_names(registry, resource_type)
    if pattern:
        needle = pattern.lower()
        names = [name for name in names if needle in name.lower()]
    for name in selected:
        if name not in names:
            names.append(name)
    return names


class RegistrationService:
    """Reads and writes the registration configuration."""

    def __init__(self, config_store: ConfigurationStore, registry: SchemaRegistry, resource_type: str = "User"):
        self.config_store = config_store
        self.registry = registry
        self.resource_type = resource_type

    def get_configuration(self, pattern: Optional[str] = None) -> Outcome:
        logger.debug("Reading registration configuration: pattern=%s", pattern)
        try:
            config = self.config_store.load()
        except Exception:
            logger.exception("Failed to load registration configuration")
            return ServerError()

        known = set(user_attribute_names(self.registry, self.resource_type))
        selected: List[str] = []
        captcha_disabled = False
        if config is not None:
            captcha_disabled = config.captcha_disabled
            selected = [name for name in config.additional_attributes if name in known]

        return Success({
            str(RegistrationParam.CAPTCHA_DISABLED): captcha_disabled,
            str(RegistrationParam.SELECTED_ATTRIBUTES): selected,
            "attributes": find_attributes_for_pattern(self.registry, selected, pattern, self.resource_type),
        })

    def save_configuration(self, request: Dict[str, Any]) -> Outcome:
        if not isinstance(request, dict):
            return ClientError("invalidSyntax", "Registration configuration must be a JSON object")
        unknown_params = [key for key in request if not RegistrationParam.is_standard(key)]
        if unknown_params:
            return ClientError("invalidSyntax", f"Unknown parameter(s): {', '.join(sorted(unknown_params))}")

        values = {key.lower(): value for key, value in request.items()}
        captcha_disabled = values.get(RegistrationParam.CAPTCHA_DISABLED.value.lower(), False)
        selected = values.get(RegistrationParam.SELECTED_ATTRIBUTES.value.lower()) or []
        if not isinstance(captcha_disabled, bool):
            return ClientError(INVALID_VALUE, "'captchaDisabled' must be a boolean")
        if not isinstance(selected, list) or not all(isinstance(name, str) for name in selected):
            return ClientError(INVALID_VALUE, "'selectedAttributes' must be a list of attribute names")

        known = set(user_attribute_names(self.registry, self.resource_type))
        unknown = [name for name in selected if name not in known]
        if unknown:
            return ClientError(INVALID_VALUE, f"Unknown attribute(s): {', '.join(unknown)}")

        config = RegistrationConfiguration(captcha_disabled, selected)
        try:
            self.config_store.save(config)
        except Exception:
            logger.exception("Failed to save registration configuration")
            return ServerError()
        logger.info("Registration configuration saved: captchaDisabled=%s, %d attribute(s)",
                    captcha_disabled, len(selected))
        return Success(config)
