"""
Module to validate values in a loaded config against the constraints declared
in config_validation.yaml
"""

# Standard
from typing import Any, Dict, List, Optional, Union
import abc

# First Party
import aconfig
import alog

# Local
from .. import constants
from ..utils import nested_get

log = alog.use_channel("CONFG")


## Public ######################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get a list of any params that are invalid

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding validation setup

    Returns:
        invalid_params:  List[str]
            A list of all string keys for parameters that fail validation
    """
    invalid_params = []
    for val_key, validator in _parse_validation_config(validation_config).items():
        if not validator.validate(nested_get(config, val_key)):
            log.warning("Found invalid config key [%s]", val_key)
            invalid_params.append(val_key)
    return invalid_params


## Validators ##################################################################

# pylint: disable=too-few-public-methods


class _ValidatedParameter(abc.ABC):
    """A parameter with type and value validation"""

    TYPES = []
    TYPE_KEY = None

    def __init__(self, optional: bool = False):
        self.optional = optional

    def validate(self, value: Any) -> bool:
        """Run the validation for a read value"""
        if self.optional and value is None:
            return True

        # bool is a subclass of int, so it never counts as a number here
        if isinstance(value, bool) and bool not in self.TYPES:
            log.warning("Invalid type <%s>", type(value))
            return False
        if not any(isinstance(value, valid_type) for valid_type in self.TYPES):
            log.warning("Invalid type <%s>", type(value))
            return False

        valid_value = self._validate_value(value)
        if not valid_value:
            log.warning("Invalid value [%s]", value)
        return valid_value

    @abc.abstractmethod
    def _validate_value(self, value: Any) -> bool:
        """Type-specific value validation"""


class _NumberParameter(_ValidatedParameter):
    """A parameter that must be a number type and has optional bounds"""

    TYPES = [int, float]
    TYPE_KEY = "number"

    def __init__(
        self,
        *,
        min: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        max: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        **kwargs,
    ):
        # NOTE: min/max shadow the builtins so the yaml keys read naturally
        super().__init__(**kwargs)
        self._min = min
        self._max = max

    def _validate_value(self, value: Union[int, float]) -> bool:
        return (self._min is None or value >= self._min) and (
            self._max is None or value <= self._max
        )


class _IntParameter(_NumberParameter):
    """A number parameter that must be an int"""

    TYPES = [int]
    TYPE_KEY = "int"


class _StrParameter(_ValidatedParameter):
    """A parameter that must be of type str and has optional length bounds"""

    TYPES = [str]
    TYPE_KEY = "str"

    def __init__(
        self,
        *,
        min_len: Optional[int] = None,
        max_len: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min_len = min_len
        self._max_len = max_len

    def _validate_value(self, value: str) -> bool:
        return (self._min_len is None or len(value) >= self._min_len) and (
            self._max_len is None or len(value) <= self._max_len
        )


class _BoolParameter(_ValidatedParameter):
    """A parameter that must be a bool"""

    TYPES = [bool]
    TYPE_KEY = "bool"

    def _validate_value(self, value: bool) -> bool:
        return True


class _EnumParameter(_ValidatedParameter):
    """A parameter with a fixed set of valid str or int values"""

    TYPES = [str, int, type(None)]
    TYPE_KEY = "enum"

    def __init__(self, *, values: List[Union[str, int, None]], **kwargs):
        super().__init__(**kwargs)
        assert (
            isinstance(values, list) and values
        ), "Must specify at least one enum value!"
        self.values = values

    def _validate_value(self, value: Union[str, int, None]) -> bool:
        return value in self.values


# pylint: enable=too-few-public-methods

## Factory #####################################################################


def _create_factory_map(param_class, factory_map=None):
    """Helper to recursively create the factory map from type key to class"""
    factory_map = factory_map or {}
    if param_class.TYPE_KEY is not None:
        factory_map[param_class.TYPE_KEY] = param_class
    for subclass in param_class.__subclasses__():
        factory_map = _create_factory_map(subclass, factory_map)
    return factory_map


_factory_map = _create_factory_map(_ValidatedParameter)


def _construct_parameter(param_args: Dict[str, Any]) -> Optional[_ValidatedParameter]:
    """Construct a _ValidatedParameter from the args parsed out of the
    validation file, or None if the type is unknown
    """
    param_type = param_args.get("type")
    if not (isinstance(param_type, str) and param_type in _factory_map):
        return None
    kwargs = {key: val for key, val in param_args.items() if key != "type"}
    return _factory_map[param_type](**kwargs)


def _parse_validation_config(
    validation_config: aconfig.Config,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, _ValidatedParameter]:
    """Recursively parse the given validation file into a dict of nested keys
    pointing to _ValidatedParameter instances.
    """
    output_dict = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        assert isinstance(key, str), "Only string keys allowed!"
        if not isinstance(val, dict):
            continue
        key_parts = prefix_parts + [key]
        nested_key = constants.NESTED_DICT_DELIM.join(key_parts)

        param = _construct_parameter(val) if "type" in val else None
        if param:
            log.debug3("Found parameter at %s", nested_key)
            output_dict[nested_key] = param
        else:
            log.debug3("Recursing into %s", nested_key)
            output_dict.update(_parse_validation_config(val, prefix_parts=key_parts))

    return output_dict
