import datetime
import re

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def to_snake_case(name: str) -> str:
    return _WORD_BOUNDARY.sub("_", name).lower()


def to_pascal_case(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in to_snake_case(name).split("_"))


def indent(lines: list[str], level: int = 1) -> list[str]:
    pad = "    " * level
    return [pad + line if line else line for line in lines]


def create_now_str() -> str:
    return datetime.datetime.now().strftime("%Y_%m_%dT%H_%M_%S")
