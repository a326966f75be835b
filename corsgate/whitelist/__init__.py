"""CorsGate whitelist — regex origin rules loaded from a text file.

Public API:
    PatternRule     — one compiled full-match origin pattern
    PatternSet      — ordered, immutable collection of rules
    WhitelistSource — loads a PatternSet from a file and hot-reloads it
    load            — read and compile a whitelist file (raises WhitelistError)
"""
from corsgate.whitelist.patterns import PatternRule, PatternSet
from corsgate.whitelist.source import WhitelistSource, load

__all__ = ["PatternRule", "PatternSet", "WhitelistSource", "load"]
