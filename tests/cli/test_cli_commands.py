from click.testing import CliRunner

from cli.main import cli


def test_validate_logic_accepts_valid_expression():
    result = CliRunner().invoke(cli, ["validate-logic", "1 AND (2 OR 3)", "--count", "3"])
    assert result.exit_code == 0
    assert "Expression is valid" in result.output


def test_validate_logic_reports_errors():
    result = CliRunner().invoke(cli, ["validate-logic", "1 AND 4", "--count", "3"])
    assert result.exit_code == 1


def test_evaluate_formula_prints_result():
    result = CliRunner().invoke(cli, ["evaluate-formula", "{price} * {qty}", "--values", '{"price": 2, "qty": 3}'])
    assert result.exit_code == 0
    assert result.output.strip() == "6"


def test_evaluate_formula_rejects_bad_values():
    result = CliRunner().invoke(cli, ["evaluate-formula", "{a}", "--values", "[1, 2]"])
    assert result.exit_code == 1
    assert "--values must be a JSON object" in result.output


def test_config_as_json():
    result = CliRunner().invoke(cli, ["config", "--format", "json"])
    assert result.exit_code == 0
    assert "salesforce_batch_size" in result.output
