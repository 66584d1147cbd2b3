"""Tests for avatar initials and colors."""

from taskboard.avatar import PALETTE, avatar_color, avatar_for, initials


def test_initials_two_words():
    """Test initials from first and last name"""
    assert initials("Jane Smith") == "JS"


def test_initials_capped_at_two():
    """Test that initials never exceed two letters"""
    assert initials("michael b johnson") == "MB"


def test_initials_single_word_and_empty():
    """Test initials for one word and for blank names"""
    assert initials("Cher") == "C"
    assert initials("") == ""
    assert initials("   ") == ""


def test_color_is_stable_and_from_palette():
    """Test that a name always maps to the same palette color"""
    assert avatar_color("JS") == PALETTE[ord("J") % len(PALETTE)]
    assert avatar_color("JS") == avatar_color("JD")
    assert avatar_color("") == PALETTE[0]


def test_avatar_for():
    """Test the avatar payload for an assignee"""
    avatar = avatar_for("John Doe")
    assert avatar["initials"] == "JD"
    assert avatar["label"] == "Assigned to John Doe"
    assert avatar["color"] in PALETTE
