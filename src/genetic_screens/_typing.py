"""Shared type aliases for the genetic_screens package."""

import numpy as np
import pandas as pd

# Matrix-like inputs accepted by the public API.
ArrayLike = np.ndarray | pd.DataFrame | pd.Series
