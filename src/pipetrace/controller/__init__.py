"""
The CONTROLLER layer turns device events and user input into route mutations
and turns route snapshots into 3D coordinates.
"""
