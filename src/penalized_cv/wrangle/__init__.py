"""Dataset, splitting and preprocessing utilities."""

from .dataset import TabularDataset
from .recipe import PreparedRecipe, Recipe
from .splits import Fold, Split, make_folds, split

__all__ = [
    "TabularDataset",
    "Recipe",
    "PreparedRecipe",
    "Split",
    "Fold",
    "split",
    "make_folds",
]
