import pytest

from cli import main


class TestCli:
    """Test the command-line entry point."""

    def test_prints_accounts_sorted_by_client(self, transactions_csv, capsys):
        path = transactions_csv(
            "type, client, tx, amount\n"
            "deposit, 2, 1, 2.0\n"
            "deposit, 1, 2, 100.0\n"
            "deposit, 1, 3, 50.0\n"
            "withdrawal, 2, 4, 1.5\n"
            "dispute, 1, 2,\n"
            "chargeback, 1, 2,\n"
        )

        exit_code = main([str(path)])

        assert exit_code == 0
        assert capsys.readouterr().out == (
            "client,available,held,total,locked\n"
            "1,50.0,100.0,150.0,true\n"
            "2,0.5,0,0.5,false\n"
        )

    def test_duplicate_dispute_rows_collapse(self, transactions_csv, capsys):
        """Identical dispute rows only hold funds once."""
        path = transactions_csv(
            "type,client,tx,amount\n"
            "deposit,1,1,10\n"
            "deposit,1,2,5\n"
            "dispute,1,1,\n"
            "dispute,1,1,\n"
        )

        assert main([str(path)]) == 0
        assert "1,5,10,15,false" in capsys.readouterr().out

    def test_missing_file(self, tmp_path, capsys):
        exit_code = main([str(tmp_path / "missing.csv")])

        assert exit_code == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "could not open transactions file" in captured.err

    def test_parse_error(self, transactions_csv, capsys):
        path = transactions_csv("type,client,tx,amount\ndeposit,1,1,lots\n")

        assert main([str(path)]) == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "line 2" in captured.err

    def test_out_of_range_amount(self, transactions_csv, capsys):
        """Huge amounts are rejected as parse errors before any arithmetic."""
        path = transactions_csv(
            "type,client,tx,amount\n"
            "deposit,1,1,1e999999999\n"
            "deposit,1,2,1e999999999\n"
        )

        assert main([str(path)]) == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "line 2" in captured.err

    def test_business_error(self, transactions_csv, capsys):
        path = transactions_csv(
            "type,client,tx,amount\n"
            "deposit,1,1,50.0\n"
            "withdrawal,1,2,100.0\n"
            "deposit,2,3,10.0\n"
        )

        assert main([str(path)]) == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "withdrawn amount is bigger than deposited amount for client 1" in captured.err

    def test_requires_path_argument(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 2

    def test_log_level_override(self, transactions_csv, capsys):
        path = transactions_csv("type,client,tx,amount\ndeposit,1,1,1\n")

        assert main([str(path), "--log-level", "DEBUG"]) == 0
        captured = capsys.readouterr()
        assert captured.out == "client,available,held,total,locked\n1,1,0,1,false\n"
        assert "Client replayed" in captured.err
