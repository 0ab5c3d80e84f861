"""
Species name standardisation.

Maps common names, scientific names, short codes and NCBI taxonomy ids
onto g:Profiler organism ids.
"""

import re

# g:Profiler id: (scientific name, taxonomy id, common names)
_SPECIES = {
    'hsapiens': ('Homo sapiens', 9606, ('human', 'hs')),
    'mmusculus': ('Mus musculus', 10090, ('mouse', 'mm')),
    'rnorvegicus': ('Rattus norvegicus', 10116, ('rat', 'rn')),
    'drerio': ('Danio rerio', 7955, ('zebrafish', 'dr')),
    'dmelanogaster': ('Drosophila melanogaster', 7227, ('fly', 'fruit fly', 'dm')),
    'celegans': ('Caenorhabditis elegans', 6239, ('worm', 'nematode', 'ce')),
    'scerevisiae': ('Saccharomyces cerevisiae', 4932, ('yeast', 'sc')),
    'sscrofa': ('Sus scrofa', 9823, ('pig', 'ss')),
    'mmulatta': ('Macaca mulatta', 9544, ('macaque', 'rhesus macaque', 'rhesus', 'mmu')),
    'ptroglodytes': ('Pan troglodytes', 9598, ('chimp', 'chimpanzee', 'pt')),
    'clfamiliaris': ('Canis lupus familiaris', 9615, ('dog', 'cf')),
    'btaurus': ('Bos taurus', 9913, ('cow', 'cattle', 'bt')),
    'ggallus': ('Gallus gallus', 9031, ('chicken', 'gg')),
    'xtropicalis': ('Xenopus tropicalis', 8364, ('frog', 'xenopus', 'xt')),
}

_LOOKUP = {}
for _gid, (_sci, _taxid, _common) in _SPECIES.items():
    _LOOKUP[_gid] = _gid
    _LOOKUP[_sci.lower()] = _gid
    _LOOKUP[str(_taxid)] = _gid
    for _name in _common:
        _LOOKUP[_name] = _gid

_GPROFILER_ID = re.compile(r'^[a-z]+$')


def map_species(species):
    """Standardise a species name to a g:Profiler organism id.

    Parameters
    ----------
    species : str or int
        e.g. ``'mouse'``, ``'Mus musculus'``, ``'Mm'``, ``10090``.

    Returns
    -------
    str, e.g. ``'mmusculus'``.
    """
    if species is None:
        raise ValueError("species must be provided")
    key = str(species).strip().lower().replace('_', ' ')
    if key in _LOOKUP:
        return _LOOKUP[key]
    if _GPROFILER_ID.match(key):
        return key
    raise ValueError(f"Unrecognised species: '{species}'")
