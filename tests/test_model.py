from keepmarks.model import DEFAULT_COLOR, LinkCheckSummary, color_for


def test_color_for_falls_back_to_default_for_display():
    assert color_for("red") == "red"
    assert color_for("indigo") == DEFAULT_COLOR


def test_link_check_summary_unpacks_as_pair():
    valid, dead = LinkCheckSummary(valid=3, dead=1)
    assert (valid, dead) == (3, 1)
