# flowgraph/constants.py
START = "__start__"
END = "__end__"
SENTINELS = frozenset({START, END})
