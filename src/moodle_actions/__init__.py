"""
Moodle Staff Actions

Staff-facing tooling over Moodle's Web Services API: assignment feedback
export, student submission browsing and a file preview proxy.
"""

__version__ = "0.1.0"
