from rextract.interaction import ScriptedInteraction, SoftChoice
from rextract.pipeline import Stage, StageFailure, StageResult
from rextract.selection import build_config

SOURCE = """fn mix(a: i32, b: i32) -> i32 {
    let c = b - a;
    c
}
"""

FAILURE = StageFailure(Stage.LIFETIME_REPAIR, StageResult(Stage.LIFETIME_REPAIR, 1))


def _config():
    start = SOURCE.index("let c = b - a;")
    return build_config(SOURCE, start, start + len("let c = b - a;"))


def test_confirm_keeps_proposed_name_by_default():
    interaction = ScriptedInteraction()
    confirmation = interaction.confirm(_config())
    assert confirmation.name == "extracted"
    assert confirmation.parameter_names is None
    assert not confirmation.visibility_is_public


def test_confirm_maps_renames_by_inferred_name():
    interaction = ScriptedInteraction(name="diff", parameter_renames={"a": "lhs"})
    confirmation = interaction.confirm(_config())
    assert confirmation.name == "diff"
    assert list(confirmation.parameter_names) == ["b", "lhs"]


def test_cancel_returns_none():
    interaction = ScriptedInteraction(cancel=True)
    assert interaction.confirm(_config()) is None
    assert len(interaction.confirmed) == 1


def test_soft_choices_are_consumed_in_order():
    interaction = ScriptedInteraction(soft_choices=[SoftChoice.RETRY, SoftChoice.ABORT])
    assert interaction.on_soft_failure(FAILURE, True) is SoftChoice.RETRY
    assert interaction.on_soft_failure(FAILURE, False) is SoftChoice.ABORT
    assert interaction.on_soft_failure(FAILURE, False) is SoftChoice.ACCEPT


def test_retry_without_retry_available_accepts():
    interaction = ScriptedInteraction(soft_choices=[SoftChoice.RETRY])
    assert interaction.on_soft_failure(FAILURE, False) is SoftChoice.ACCEPT


def test_hard_failure_answer():
    assert ScriptedInteraction().on_hard_failure(FAILURE)
    keep = ScriptedInteraction(revert_on_hard_failure=False)
    assert not keep.on_hard_failure(FAILURE)
    assert keep.hard_failures == [FAILURE]


def test_failure_description_names_the_stage():
    text = FAILURE.describe()
    assert text.startswith("soft failure in lifetime-repair: exit 1")
