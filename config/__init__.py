"""Configuration helpers for the FabriLog production tracker."""

# This package collects runtime configuration assets that can be customised
# without touching the application logic.  Individual modules provide
# structured accessors for specific domains (for example Supabase schema
# definitions).
