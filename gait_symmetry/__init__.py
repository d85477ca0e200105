"""
Gait Symmetry - Python Implementation
=====================================

Directional gait-symmetry indices with exact inverses and cross-metric
conversions, plus a Monte Carlo power simulation of how noise and sample
size affect the detectability of asymmetry under each index.

Core Modules:
- symmetry_functions: The nine symmetry indices, inverses, convert, limits
- simulation: Simulated data, symmetry contrast kernel, power estimate
- buffer_pool: Reusable buffers shared by simulation workers
- powersim: Parallel parameter sweep
"""

from .errors import *
from .symmetry_functions import *
from .simulation import *
from .buffer_pool import *
from .powersim import *

__version__ = "1.0.0"
