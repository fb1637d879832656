import pytest

from shipci.settings import DEFAULT_DATABASE_URL, SettingsError, load_settings


def test_defaults():
    s = load_settings({})
    assert s.term_color == "auto"
    assert s.github_token is None
    assert s.database_url == DEFAULT_DATABASE_URL
    assert s.workers is None


def test_color_preference_falls_back_to_cargo():
    assert load_settings({"CARGO_TERM_COLOR": "always"}).term_color == "always"
    assert load_settings({"SHIPCI_TERM_COLOR": "never", "CARGO_TERM_COLOR": "always"}).term_color == "never"
    assert load_settings({"SHIPCI_TERM_COLOR": "rainbow"}).term_color == "auto"


def test_values_from_environment():
    s = load_settings(
        {
            "GITHUB_TOKEN": "t",
            "GITHUB_REPOSITORY": "acme/group",
            "GITHUB_EVENT_NAME": "release",
            "GITHUB_EVENT_PATH": "/tmp/event.json",
            "SHIPCI_WEBHOOK_SECRET": "s",
            "SHIPCI_WORKERS": "3",
            "SHIPCI_PUBLISH_DIR": "dist",
        }
    )
    assert s.github_token == "t"
    assert s.github_repository == "acme/group"
    assert s.event_name == "release"
    assert s.event_path == "/tmp/event.json"
    assert s.webhook_secret == "s"
    assert s.workers == 3
    assert s.publish_dir == "dist"


@pytest.mark.parametrize("raw", ["abc", "0", "-2"])
def test_workers_must_be_a_positive_integer(raw):
    with pytest.raises(SettingsError, match="SHIPCI_WORKERS"):
        load_settings({"SHIPCI_WORKERS": raw})
