import os

from jewelry_render import load_asset

CATEGORY_RANGES = {
    "gold_earrings": (1, 16),
    "gold_necklaces": (1, 19),
    "diamond_earrings": (1, 9),
    "diamond_necklaces": (1, 6),
}
DEFAULT_RANGE = (1, 15)


def kind_for(category):
    return "earring" if "earrings" in category else "necklace"


class JewelryCatalog:
    """
    Directory layout: <root>/<category>/<category><n>.png, numbered from 1.
    """

    def __init__(self, root, categories=None):
        self.root = root
        self.categories = tuple(categories or CATEGORY_RANGES)

    def range_for(self, category):
        return CATEGORY_RANGES.get(category, DEFAULT_RANGE)

    def relative_paths(self, category):
        start, end = self.range_for(category)
        return [f"{category}/{category}{i}.png" for i in range(start, end + 1)]

    def paths(self, category):
        return [os.path.join(self.root, *p.split("/")) for p in self.relative_paths(category)]

    def path_for(self, category, index):
        start, end = self.range_for(category)
        if not start <= index <= end:
            raise IndexError(f"{category} has items {start}..{end}, got {index}")
        return os.path.join(self.root, category, f"{category}{index}.png")

    def load(self, category, index):
        return load_asset(self.path_for(category, index))

    def describe(self):
        out = {}
        for c in self.categories:
            start, end = self.range_for(c)
            out[c] = {"kind": kind_for(c), "start": start, "end": end}
        return out
