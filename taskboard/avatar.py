"""Initials and palette color for assignee avatars."""

PALETTE = (
    "emerald",
    "teal",
    "green",
    "cyan",
    "blue",
    "indigo",
    "violet",
    "purple",
)


def initials(name: str) -> str:
    """First letter of each word, upper-cased, at most two ("Jane Smith" -> "JS")."""
    words = (name or "").split()
    return "".join(w[0] for w in words).upper()[:2]


def avatar_color(initials_: str) -> str:
    if not initials_:
        return PALETTE[0]
    return PALETTE[ord(initials_[0]) % len(PALETTE)]


def avatar_for(name: str) -> dict:
    """Avatar descriptor for a person's display name."""
    text = initials(name)
    return {"initials": text, "color": avatar_color(text), "label": f"Assigned to {name}"}
