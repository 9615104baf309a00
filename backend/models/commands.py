"""
Chat messages and the commands interpreted from them.

RawMessage is what the feed hands us; Command is what the interpreter
produces. Commands are tagged by `kind` so dispatchers can branch on a
closed set of variants instead of re-parsing text.
"""
from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel

from models.game import GameKind


class RawMessage(BaseModel):
    id: str
    author_external_id: str
    author_name: str
    author_avatar_url: Optional[str] = None
    text: str
    published_at: Optional[datetime] = None


class CommandKind(str, Enum):
    JOIN = "join"
    NUMBER = "number"          # pass-token target or duel answer, decided downstream
    START_GAME = "start_game"
    NOISE = "noise"


class _CommandBase(BaseModel):
    message_id: str
    author_external_id: str
    author_name: str
    author_avatar_url: Optional[str] = None


class JoinCommand(_CommandBase):
    kind: Literal[CommandKind.JOIN] = CommandKind.JOIN


class NumberCommand(_CommandBase):
    kind: Literal[CommandKind.NUMBER] = CommandKind.NUMBER
    value: int


class StartGameCommand(_CommandBase):
    kind: Literal[CommandKind.START_GAME] = CommandKind.START_GAME
    game: GameKind


class NoiseCommand(_CommandBase):
    kind: Literal[CommandKind.NOISE] = CommandKind.NOISE
    text: str = ""


Command = Union[JoinCommand, NumberCommand, StartGameCommand, NoiseCommand]
