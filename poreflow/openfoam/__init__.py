"""
OpenFOAM adapters: text file I/O, meshing (blockMesh/snappyHexMesh) and the
steady flow solver.
"""
