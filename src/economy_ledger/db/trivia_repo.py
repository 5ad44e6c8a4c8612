"""Trivia attempt aggregate operations."""

from __future__ import annotations

import sqlite3

from economy_ledger.ledger.types import TriviaAttempt


def insert_attempt(cursor: sqlite3.Cursor, attempt: TriviaAttempt) -> None:
    cursor.execute(
        """
        INSERT INTO trivia_attempts (
            attempt_id, user_id, winner_id, score, credits_earned, completed_at
        )
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            attempt.attempt_id,
            attempt.user_id,
            attempt.winner_id,
            attempt.score,
            attempt.credits_earned,
            attempt.completed_at,
        ),
    )


def delete_attempt(cursor: sqlite3.Cursor, attempt_id: str) -> bool:
    cursor.execute("DELETE FROM trivia_attempts WHERE attempt_id = ?", (attempt_id,))
    return cursor.rowcount > 0


def attempt_exists(cursor: sqlite3.Cursor, attempt_id: str) -> bool:
    cursor.execute("SELECT 1 FROM trivia_attempts WHERE attempt_id = ?", (attempt_id,))
    return cursor.fetchone() is not None


def list_attempt_ids(cursor: sqlite3.Cursor, user_id: str) -> list[str]:
    cursor.execute(
        "SELECT attempt_id FROM trivia_attempts WHERE user_id = ? ORDER BY completed_at",
        (user_id,),
    )
    return [row[0] for row in cursor.fetchall()]
