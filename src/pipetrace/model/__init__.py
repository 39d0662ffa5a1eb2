"""
The MODEL layer contains pure data structures and their invariants.
It has NO knowledge of device sensors, AR sessions or rendering.
It deals with Points, Segments, Calibration and I/O.
"""
