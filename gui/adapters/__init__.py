"""Qt adapter layer.

This package binds the notebook engine to Qt.

Notes
-----
Adapters exist to:
- run engine work that must stay on the GUI thread on the Qt event loop,
- present an ObservedListAdapter as a Qt item model,
- keep widgets free of persistence details.
"""
