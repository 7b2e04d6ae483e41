"""
dpgs: dependency parser second-order (grandparents + siblings) с выводом через
двойственную декомпозицию (dual decomposition).
"""

__version__ = "0.1.0"
