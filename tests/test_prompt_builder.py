from pebot.core.prompt_builder import DEFAULT_INSTRUCTIONS, PromptBuilder


def test_instructions_from_front_matter_file(tmp_path) -> None:
    path = tmp_path / "INSTRUCTIONS.md"
    path.write_text(
        "---\nname: Perf Helper\ndescription: Answers PE questions\n---\n\nYou answer performance questions.\n",
        encoding="utf-8",
    )

    builder = PromptBuilder(path)

    assert builder.build_instructions() == "You answer performance questions."
    assert builder.assistant_name == "Perf Helper"
    assert builder.description == "Answers PE questions"


def test_missing_file_uses_default(tmp_path) -> None:
    builder = PromptBuilder(tmp_path / "missing.md")

    assert builder.build_instructions() == DEFAULT_INSTRUCTIONS
    assert builder.assistant_name == "PE Bot"
    assert builder.description == ""


def test_reload_picks_up_changes(tmp_path) -> None:
    path = tmp_path / "INSTRUCTIONS.md"
    path.write_text("First version.", encoding="utf-8")
    builder = PromptBuilder(path)
    assert builder.build_instructions() == "First version."

    path.write_text("Second version.", encoding="utf-8")

    assert builder.build_instructions() == "First version."
    assert builder.reload() == "Second version."
