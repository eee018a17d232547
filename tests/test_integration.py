"""
Integration tests for the budget sync.

These tests run a statement file through the configured orchestrator and
exercise the configuration loader and the CLI commands that work on files.
"""

import asyncio
from datetime import date
from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from api.models.config import Config, create_example_config, load_config_file
from api.models.rule import PatternKind, TargetField
from api.models.session import SessionState
from api.models.transaction import DuplicateStatus, TransactionStatus
from api.services.sync_orchestrator import SyncStepError, create_orchestrator
from cli.main import main
from core.bank import BankFetchError, OfxStatementBank
from core.ledger_client import YnabLedgerClient
from core.store import RuleStore

from conftest import FakeLedger, make_ledger_tx, make_rule


OFX_CONTENT = """OFXHEADER:100
DATA:OFXSGML
VERSION:102
SECURITY:NONE
ENCODING:USASCII
CHARSET:1252
COMPRESSION:NONE
OLDFILEUID:NONE
NEWFILEUID:NONE

<OFX>
<SIGNONMSGSRSV1>
<SONRS>
<STATUS>
<CODE>0</CODE>
<SEVERITY>INFO</SEVERITY>
</STATUS>
<DTSERVER>20231215120000</DTSERVER>
<LANGUAGE>ENG</LANGUAGE>
</SONRS>
</SIGNONMSGSRSV1>
<BANKMSGSRSV1>
<STMTTRNRS>
<TRNUID>1</TRNUID>
<STATUS>
<CODE>0</CODE>
<SEVERITY>INFO</SEVERITY>
</STATUS>
<STMTRS>
<CURDEF>EUR</CURDEF>
<BANKACCTFROM>
<BANKID>123456789</BANKID>
<ACCTID>12345</ACCTID>
<ACCTTYPE>CHECKING</ACCTTYPE>
</BANKACCTFROM>
<BANKTRANLIST>
<DTSTART>20231201000000</DTSTART>
<DTEND>20231215000000</DTEND>
<STMTTRN>
<TRNTYPE>DEBIT</TRNTYPE>
<DTPOSTED>20231205120000</DTPOSTED>
<TRNAMT>-85.50</TRNAMT>
<FITID>202312051</FITID>
<NAME>GROCERY STORE</NAME>
<MEMO>Weekly groceries</MEMO>
</STMTTRN>
<STMTTRN>
<TRNTYPE>DEBIT</TRNTYPE>
<DTPOSTED>20231210150000</DTPOSTED>
<TRNAMT>-45.00</TRNAMT>
<FITID>202312102</FITID>
<NAME>GAS STATION</NAME>
<MEMO>Fill up tank</MEMO>
</STMTTRN>
</BANKTRANLIST>
<LEDGERBAL>
<BALAMT>1234.56</BALAMT>
<DTASOF>20231215120000</DTASOF>
</LEDGERBAL>
</STMTRS>
</STMTTRNRS>
</BANKMSGSRSV1>
</OFX>
"""

STATEMENT_DAY = date(2023, 12, 15)


def run(coro):
    return asyncio.run(coro)


class TestStatementSync:
    """A statement file through the whole session."""

    def setup_method(self):
        self.ledger = FakeLedger()

    def write_files(self, tmp_path: Path) -> Path:
        statement = tmp_path / "checking.ofx"
        statement.write_text(OFX_CONTENT)

        rules_file = tmp_path / "rules.yaml"
        RuleStore(str(rules_file)).create(
            make_rule("GROCERY", "cat-groceries", "Groceries", target=TargetField.COMBINED)
        )

        config = create_example_config()
        config['bank']['statement_file'] = str(statement)
        config['ledger']['account_id'] = "acc-checking"
        config['sync']['days_to_fetch'] = 14
        config['storage']['rules_file'] = str(rules_file)
        config['storage']['settings_file'] = str(tmp_path / "settings.yaml")

        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump(config))
        return config_file

    def build(self, tmp_path: Path):
        config = load_config_file(str(self.write_files(tmp_path)))
        orchestrator = create_orchestrator(config)
        orchestrator.bank._today = lambda: STATEMENT_DAY
        orchestrator.ledger = self.ledger
        return orchestrator

    def test_configured_adapters(self, tmp_path):
        config = load_config_file(str(self.write_files(tmp_path)))
        orchestrator = create_orchestrator(config)

        assert isinstance(orchestrator.bank, OfxStatementBank)
        assert isinstance(orchestrator.ledger, YnabLedgerClient)
        assert orchestrator.ledger.base_url == "https://api.ynab.com/v1"
        assert len(orchestrator.rule_store.list()) == 1
        assert orchestrator.days_to_fetch() == 14

    def test_statement_to_ledger(self, tmp_path):
        orchestrator = self.build(tmp_path)
        self.ledger.transactions = [
            make_ledger_tx(id="L1", amount="-45.00", memo="Fill up tank, Ref: 202312102",
                           tx_date=date(2023, 12, 10))
        ]

        orchestrator.start()
        challenge = run(orchestrator.begin_bank_auth())
        assert challenge.kind == "none"
        run(orchestrator.confirm_challenge())

        sessions = orchestrator.sessions
        grocery = sessions.get_transaction("202312051")
        gas = sessions.get_transaction("202312102")
        assert grocery.transaction.currency == "EUR"
        assert grocery.transaction.payee == "GROCERY STORE"
        assert grocery.status == TransactionStatus.AUTO_CATEGORIZED
        assert gas.duplicate.status == DuplicateStatus.CONFIRMED_DUPLICATE
        assert self.ledger.list_calls == [("acc-checking", 15)]

        orchestrator.skip("202312102")
        result = run(orchestrator.import_transactions())

        assert result.imported == 1
        request = self.ledger.create_calls[0][0]
        assert request.account_id == "acc-checking"
        assert request.import_id == "BS:202312051"
        assert request.memo == "Weekly groceries, Ref: 202312051"
        assert sessions.get_session().session.state == SessionState.COMPLETED

    def test_missing_statement_fails_challenge(self, tmp_path):
        orchestrator = self.build(tmp_path)
        orchestrator.bank.statement_file = str(tmp_path / "gone.ofx")

        orchestrator.start()
        run(orchestrator.begin_bank_auth())
        with pytest.raises(SyncStepError) as exc_info:
            run(orchestrator.confirm_challenge())

        assert exc_info.value.step == "challenge confirmation"
        assert orchestrator.sessions.get_session().session.state == SessionState.FAILED


class TestOfxStatementBank:

    def make_bank(self, tmp_path, today=STATEMENT_DAY) -> OfxStatementBank:
        statement = tmp_path / "checking.ofx"
        statement.write_text(OFX_CONTENT)
        return OfxStatementBank(str(statement), today=lambda: today)

    def fetch(self, bank, account_ref="", days=30):
        run(bank.begin_auth())
        run(bank.confirm_challenge())
        return run(bank.fetch_transactions(account_ref, days))

    def test_fetch_window(self, tmp_path):
        bank = self.make_bank(tmp_path)

        assert [tx.reference for tx in self.fetch(bank, days=10)] == ["202312051", "202312102"]
        assert [tx.reference for tx in self.fetch(bank, days=7)] == ["202312102"]

    def test_account_selection(self, tmp_path):
        bank = self.make_bank(tmp_path)

        assert len(self.fetch(bank, account_ref="12345")) == 2
        with pytest.raises(BankFetchError):
            self.fetch(bank, account_ref="99999")

    def test_fetch_requires_confirmed_challenge(self, tmp_path):
        bank = self.make_bank(tmp_path)
        with pytest.raises(BankFetchError):
            run(bank.fetch_transactions("", 30))

    def test_unparseable_statement(self, tmp_path):
        statement = tmp_path / "broken.ofx"
        statement.write_text("this is not a statement")
        bank = OfxStatementBank(str(statement))

        with pytest.raises(BankFetchError):
            self.fetch(bank)


class TestConfiguration:

    def test_example_config_is_valid(self):
        config = Config.from_dict(create_example_config())

        assert config.bank.type == "ofx"
        assert config.ledger.type == "ynab"
        assert config.sync.ledger_lookup_days == 31

    def test_invalid_values(self):
        data = create_example_config()
        data['sync']['days_to_fetch'] = 120
        with pytest.raises(ValueError, match="days_to_fetch"):
            Config.from_dict(data)

        data = create_example_config()
        data['sync']['memo_limit'] = "long"
        with pytest.raises(ValueError, match="non-integer"):
            Config.from_dict(data)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            load_config_file(str(tmp_path / "nope.yaml"))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError, match="dictionary"):
            load_config_file(str(path))


class TestCommands:

    def setup_method(self):
        self.runner = CliRunner()

    def test_init_config(self, tmp_path):
        output = tmp_path / "config.yaml"
        result = self.runner.invoke(main, ['init-config', str(output)])

        assert result.exit_code == 0
        assert load_config_file(str(output)).sync.days_to_fetch == 30

    def test_check_rules(self, tmp_path):
        rules_file = tmp_path / "rules.yaml"
        store = RuleStore(str(rules_file))
        store.create(make_rule("REWE"))
        config = create_example_config()
        config['storage']['rules_file'] = str(rules_file)
        config_file = tmp_path / "config.yaml"
        config_file.write_text(yaml.safe_dump(config))

        result = self.runner.invoke(main, ['check-rules', '-c', str(config_file)])
        assert result.exit_code == 0
        assert "1 rules checked, 0 invalid" in result.output

        # a hand-edited file can still hold a broken pattern
        data = yaml.safe_load(rules_file.read_text())
        data['rules'][0]['pattern'] = "(["
        data['rules'][0]['pattern_kind'] = PatternKind.REGEX.value
        rules_file.write_text(yaml.safe_dump(data))

        result = self.runner.invoke(main, ['check-rules', '-c', str(config_file)])
        assert result.exit_code == 1
        assert "1 rules checked, 1 invalid" in result.output
