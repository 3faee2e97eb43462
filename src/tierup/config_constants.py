#!/usr/bin/env python3
"""
Configuration filename constants for tierup.

CRITICAL: This is the SINGLE SOURCE OF TRUTH for all config filenames.
All modules MUST import from this file instead of using hardcoded strings.

Naming Convention:
- *.defaults.toml.j2 = Template defaults (committed)
- *.toml.j2 = Template overrides (gitignored)
- *.toml = Rendered runtime config / state (gitignored)
"""

# ============================================================================
# TOML Configuration Filenames (CANONICAL - DO NOT HARDCODE)
# ============================================================================

# Deployment configuration (deployment directory, see -d/--dir)
CONFIG_DEFAULTS = 'tierup.defaults.toml.j2'
CONFIG_OVERRIDES = 'tierup.toml.j2'
CONFIG_RENDERED = 'tierup.toml'

# Applied-stage ledger
STATE_FILE = 'tierup.state.toml'

# ============================================================================
# Labels and directives
# ============================================================================

LABEL_SPEC_HASH = 'tierup.spec-hash'
LABEL_APP = 'tierup.app'

DIRECTIVE_VAULT = 'ASK_VAULT:'
DIRECTIVE_EXTERNAL = 'ASK_EXTERNAL:'

