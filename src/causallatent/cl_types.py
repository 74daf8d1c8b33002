from enum import Enum

import numpy as np
from numpy.typing import NDArray

XArray = NDArray[np.number]
IArray = NDArray[np.int64]
AdjArray = NDArray[np.int8]


class CITestType(Enum):
    CHISQ = 'chisq'
    GSQ = 'gsq'
    DSEP = 'd_separation'

    def __eq__(self, other):
        return self.value == other.value

    def is_oracle(self): return self.value == CITestType.DSEP.value


class LearnerType(Enum):
    """ CPT coding schemes: maximum likelihood, MML adaptive code, adaptive code w/o MML correction (latent nodes) """
    ML = 'ml'
    MML = 'mml'
    LATENT = 'latent'

    def __eq__(self, other):
        return self.value == other.value


class MoveType(Enum):
    SKELETAL = 'skeletal'
    TEMPORAL = 'temporal'
    DOUBLE_SKELETAL = 'double_skeletal'
    PARENT_SWAP = 'parent_swap'

    def __eq__(self, other):
        return self.value == other.value

    def min_nodes(self):
        return 2 if self.value in [MoveType.SKELETAL.value, MoveType.TEMPORAL.value] else 3


class LatentInit(Enum):
    """ initial position of the latent node if no trigger structure was found """
    ROOT = 'latent as root'
    DEPENDENCIES = 'using dependencies'
    RANDOM = 'random'

    def __eq__(self, other):
        return self.value == other.value

    def __str__(self): return self.value
