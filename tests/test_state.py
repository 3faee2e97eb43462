"""
Applied-stage ledger tests.
"""

from pathlib import Path
import tomllib

import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from tierup.state import StateLedger  # noqa: E402


class TestStateLedger:
    def test_missing_file_is_empty(self, tmp_path):
        ledger = StateLedger(tmp_path / "tierup.state.toml")
        assert not ledger.was_applied('bootstrap')

    def test_mark_applied_persists(self, tmp_path):
        path = tmp_path / "tierup.state.toml"
        StateLedger(path).mark_applied('network', 3)

        with open(path, 'rb') as f:
            data = tomllib.load(f)
        assert data['stages']['network']['ordinal'] == 3
        assert 'applied_at' in data['stages']['network']
        assert StateLedger(path).was_applied('network')

    def test_in_memory_ledger_never_writes(self, tmp_path):
        ledger = StateLedger(None)
        ledger.mark_applied('source', 2)
        assert ledger.was_applied('source')
        assert list(tmp_path.iterdir()) == []
