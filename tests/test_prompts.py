import pytest

from archcrypt import prompts


@pytest.mark.parametrize("answer", ["", "n", "no", "maybe", " "])
def test_confirm_defaults_to_no(answer, scripted_input):
    assert prompts.confirm("Proceed with installation?", input_fn=scripted_input(answer)) is False


@pytest.mark.parametrize("answer", ["y", "Y", "yes", " YES "])
def test_confirm_accepts_explicit_yes(answer, scripted_input):
    assert prompts.confirm("Proceed with installation?", input_fn=scripted_input(answer)) is True


def test_confirm_treats_end_of_input_as_no(scripted_input):
    reader = scripted_input()
    assert prompts.confirm("Reboot now?", input_fn=reader) is False
    assert reader.prompts == ["Reboot now? [y/N]: "]


def test_ask_reprompts_until_answered(scripted_input):
    reader = scripted_input("", "  ", "archbox")
    assert prompts.ask("Hostname", input_fn=reader) == "archbox"
    assert reader.prompts == ["Hostname: "] * 3


def test_ask_uses_default_on_empty(scripted_input):
    reader = scripted_input("")
    assert prompts.ask("Timezone", default="Asia/Dhaka", input_fn=reader) == "Asia/Dhaka"
    assert reader.prompts == ["Timezone (default Asia/Dhaka): "]


def test_ask_propagates_end_of_input(scripted_input):
    with pytest.raises(EOFError):
        prompts.ask("Hostname", input_fn=scripted_input())
