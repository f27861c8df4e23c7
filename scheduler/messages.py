"""
German notification texts for schedule changes.
"""

NOTIFICATION_TITLE = "Stundenplan geändert! ⚠️"
TEST_NOTIFICATION_TITLE = "Test Push 🧪"
TEST_NOTIFICATION_BODY = "Push-Benachrichtigungen funktionieren! 🎉"


def _count_phrase(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def build_message(substitutions: int, cancellations: int, delta: int) -> str:
    """
    Build the notification body, e.g. "2 Ausfälle, 1 Vertretung im Stundenplan."

    Cancellations come first. When both counts are zero the generic
    "N neue Änderung(en)" phrase with ``delta`` is used instead.
    """
    parts = []
    if cancellations > 0:
        parts.append(_count_phrase(cancellations, "Ausfall", "Ausfälle"))
    if substitutions > 0:
        parts.append(_count_phrase(substitutions, "Vertretung", "Vertretungen"))

    if parts:
        return ", ".join(parts) + " im Stundenplan."
    return f"{delta} neue Änderung(en) im Stundenplan."
