"""
Command interpreter — free-form chat text → tagged Command.

Context-free: a bare number is classified as NUMBER and its meaning
(pass target or duel answer) is decided by whichever game is active.
Anything unrecognised becomes NOISE and is dropped by the dispatcher.
"""
from typing import Dict, FrozenSet

from models.commands import (
    Command, JoinCommand, NoiseCommand, NumberCommand, RawMessage, StartGameCommand,
)
from models.game import GameKind

# Join keywords, compared after lower-casing and stripping a leading "!".
JOIN_WORDS: FrozenSet[str] = frozenset({
    "join",
    "دخول",      # Arabic, the keyword most of the audience types
    "انضمام",
    "entrar",
    "unirse",
    "rejoindre",
    "beitreten",
    "katıl",
    "参加",
})

START_WORDS: Dict[str, GameKind] = {
    "duel": GameKind.DUEL,
    "مبارزة": GameKind.DUEL,
    "bomb": GameKind.ELIMINATION,
    "قنبلة": GameKind.ELIMINATION,
    "elimination": GameKind.ELIMINATION,
}

# Longest number we bother parsing; duel targets are 4 digits and
# participant ids stay far below this.
_MAX_DIGITS = 9


def _normalise(text: str) -> str:
    token = text.strip().lower()
    if token.startswith("!"):
        token = token[1:].strip()
    return token


def _parse_number(token: str):
    if token.startswith("#"):
        token = token[1:]
    # isdecimal() accepts any Unicode decimal script (Arabic-Indic digits
    # included) and int() converts them; it rejects "+5", "1.5" and "²".
    if token and len(token) <= _MAX_DIGITS and token.isdecimal():
        return int(token)
    return None


def interpret(message: RawMessage) -> Command:
    """Classify one chat message. Never raises."""
    base = {
        "message_id": message.id,
        "author_external_id": message.author_external_id,
        "author_name": message.author_name,
        "author_avatar_url": message.author_avatar_url,
    }
    token = _normalise(message.text or "")

    if token in JOIN_WORDS:
        return JoinCommand(**base)

    if token in START_WORDS:
        return StartGameCommand(game=START_WORDS[token], **base)

    number = _parse_number(token)
    if number is not None:
        return NumberCommand(value=number, **base)

    return NoiseCommand(text=(message.text or "")[:200], **base)
