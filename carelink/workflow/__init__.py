"""Domain workflow core: state machines, access rules and ledger checks."""
