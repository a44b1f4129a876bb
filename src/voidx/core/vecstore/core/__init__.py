"""Core configuration, exceptions and data models of the search store.

Import submodules directly; this package stays empty so that the progress
module can depend on the exceptions without an import cycle.
"""
