"""
Typed spec and status for the EchoResource kind
"""

# Standard
from dataclasses import dataclass

# Local
from ..exceptions import assert_spec


@dataclass(frozen=True)
class EchoSpec:
    """The user-declared desired state of an EchoResource"""

    input_message: str

    @classmethod
    def from_dict(cls, raw: dict) -> "EchoSpec":
        """Parse the spec mapping

        Error Semantics: Raises InvalidSpecError when inputMessage is missing or
        is not a string. The empty string is valid.
        """
        assert_spec(isinstance(raw, dict), "EchoResource spec must be a mapping")
        assert_spec(
            "inputMessage" in raw, "EchoResource spec missing required field inputMessage"
        )
        message = raw["inputMessage"]
        assert_spec(
            isinstance(message, str),
            f"EchoResource spec.inputMessage must be a string, got {type(message).__name__}",
        )
        return cls(input_message=message)

    def to_dict(self) -> dict:
        return {"inputMessage": self.input_message}


@dataclass
class EchoStatus:
    """The observed state written by the reconciler"""

    echo_message: str = ""

    @classmethod
    def from_dict(cls, raw: dict) -> "EchoStatus":
        """Parse the status mapping

        Error Semantics: Raises TypeError or ValueError when the status has an
        unexpected shape.
        """
        if not isinstance(raw, dict):
            raise TypeError(f"status must be a mapping, got {type(raw).__name__}")
        if "echoMessage" not in raw:
            raise ValueError("status missing echoMessage")
        message = raw["echoMessage"]
        if not isinstance(message, str):
            raise TypeError(
                f"status.echoMessage must be a string, got {type(message).__name__}"
            )
        return cls(echo_message=message)

    def to_dict(self) -> dict:
        return {"echoMessage": self.echo_message}
