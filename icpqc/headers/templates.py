# icpqc/headers/templates.py
"""
Raw header templates for the two supported instrument exports, plus the
certified values of the secondary (SJS) standard.

The templates are copied from real export files and deliberately left as the
vendor writes them (stray quotes, doubled spaces, intensity and internal
standard columns). `icpqc.headers.schema` cleans them up.
"""

from typing import Dict, List, Optional, Tuple

# ---------------------------------------------------------------------------
# Major elements (ICP-OES, flat single header line starting with "Rack:Tube")
# ---------------------------------------------------------------------------

MAJOR_MARKER = "Rack:Tube"

_MAJOR_META = ['Rack:Tube', '"Solution Label"', 'Type', ' Timestamp', 'Dilution']

# (symbol, wavelength) in the order the method file lists the lines
_MAJOR_LINES: List[Tuple[str, str]] = [
    ("Al", "237.312"),
    ("Al", "396.152"),
    ("B", "249.772"),
    ("Ba", "455.403"),
    ("Ca", "317.933"),
    ("Ca", "422.673"),
    ("Cu", "327.395"),
    ("Fe", "238.204"),
    ("Fe", "259.940"),
    ("K", "766.491"),
    ("Li", "670.783"),
    ("Mg", "279.553"),
    ("Mn", "257.610"),
    ("Na", "589.592"),
    ("Ni", "231.604"),
    ("P", "213.618"),
    ("S", "181.972"),
    ("Si", "251.611"),
    ("Sr", "407.771"),
    ("Ti", "336.122"),
    ("Zn", "213.857"),
]


def _major_raw_headers() -> List[str]:
    headers = list(_MAJOR_META)
    for symbol, wavelength in _MAJOR_LINES:
        headers.append(f"{symbol} {wavelength} nm  ppm")
        headers.append(f'"{symbol} {wavelength} nm C/S"')
    headers.append("Y 371.029 nm (ISTD) ratio")
    headers.append("Y 371.029 nm C/S")
    return headers


MAJOR_RAW_HEADERS: List[str] = _major_raw_headers()

# ---------------------------------------------------------------------------
# Trace elements (ICP-MS, two header rows; "Sample" caption on the top row)
# ---------------------------------------------------------------------------

TRACE_MARKER = "Sample"

_TRACE_META = ['Data File', 'Acq.  Date-Time', 'Type', '"Solution Label"']

TRACE_SUB_LABELS: Tuple[str, str, str] = ("Conc. [ ppb ]", "CPS", "ISTD Recovery %")

_TRACE_ISOTOPES: List[str] = [
    "7 Li [ No Gas ]",
    "9 Be [ No Gas ]",
    "11 B [ No Gas ]",
    "23 Na [ He ]",
    "24 Mg [ He ]",
    "27 Al [ He ]",
    "39 K [ He ]",
    "44 Ca [ He ]",
    "51 V [ He ]",
    "52 Cr [ He ]",
    "55 Mn [ He ]",
    "56 Fe [ He ]",
    "59 Co [ He ]",
    "60 Ni [ He ]",
    "63 Cu [ He ]",
    "66 Zn [ He ]",
    "75 As [ He ]",
    "78 Se [ He ]",
    "88 Sr [ He ]",
    "95 Mo [ He ]",
    "107 Ag [ He ]",
    "107 Ag [ No Gas ]",
    "111 Cd [ He ]",
    "111 Cd [ No Gas ]",
    "118 Sn [ He ]",
    "121 Sb [ He ]",
    "137 Ba [ He ]",
    "205 Tl [ He ]",
    "208 Pb [ He ]",
    "208 Pb [ No Gas ]",
]


def trace_isotopes() -> List[str]:
    return list(_TRACE_ISOTOPES)


def _trace_raw_headers() -> List[str]:
    headers = list(_TRACE_META)
    for isotope in _TRACE_ISOTOPES:
        for sub in TRACE_SUB_LABELS:
            headers.append(f"{isotope} {sub}")
    return headers


TRACE_RAW_HEADERS: List[str] = _trace_raw_headers()


def trace_header_rows() -> Tuple[List[str], List[str]]:
    """
    The two physical header rows of a trace export, as the instrument writes
    them: the top row carries the "Sample" caption and one bracketed isotope
    label per triplet, the row beneath carries the column names.
    """
    top = [TRACE_MARKER] + [""] * (len(_TRACE_META) - 1)
    sub = [h.strip('"') for h in _TRACE_META]
    for isotope in _TRACE_ISOTOPES:
        top.extend([isotope, "", ""])
        sub.extend(TRACE_SUB_LABELS)
    return top, sub


# ---------------------------------------------------------------------------
# Secondary standard (SJS-Std) certificate, keyed by element symbol.
# Values are (certified value, allowed error); units follow the instrument
# (ppm for major, ppb for trace). None means the certificate has no entry.
# ---------------------------------------------------------------------------

MAJOR_SJS_CERTIFICATE: Dict[str, Tuple[Optional[float], Optional[float]]] = {
    "Al": (2.0, 0.2),
    "B": (0.5, 0.05),
    "Ba": (0.5, 0.05),
    "Ca": (10.0, 1.0),
    "Cu": (0.5, 0.05),
    "Fe": (2.0, 0.2),
    "K": (5.0, 0.5),
    "Li": (0.5, 0.05),
    "Mg": (5.0, 0.5),
    "Mn": (0.5, 0.05),
    "Na": (10.0, 1.0),
    "Ni": (0.5, 0.05),
    "P": (2.0, 0.2),
    "S": (5.0, 0.5),
    "Si": (None, None),
    "Sr": (0.5, 0.05),
    "Ti": (0.5, 0.0),
    "Zn": (0.5, 0.05),
}

TRACE_SJS_CERTIFICATE: Dict[str, Tuple[Optional[float], Optional[float]]] = {
    "Li": (10.0, 1.0),
    "Be": (10.0, 1.0),
    "B": (50.0, 5.0),
    "Na": (500.0, 50.0),
    "Mg": (500.0, 50.0),
    "Al": (50.0, 5.0),
    "K": (500.0, 50.0),
    "Ca": (500.0, 50.0),
    "V": (10.0, 1.0),
    "Cr": (10.0, 1.0),
    "Mn": (10.0, 1.0),
    "Fe": (50.0, 5.0),
    "Co": (10.0, 1.0),
    "Ni": (10.0, 1.0),
    "Cu": (10.0, 1.0),
    "Zn": (50.0, 5.0),
    "As": (10.0, 1.0),
    "Se": (10.0, 1.0),
    "Sr": (50.0, 5.0),
    "Mo": (10.0, 1.0),
    "Ag": (5.0, 0.5),
    "Cd": (5.0, 0.5),
    "Sn": (0.0, 0.0),
    "Sb": (10.0, 1.0),
    "Ba": (50.0, 5.0),
    "Tl": (5.0, 0.5),
    "Pb": (10.0, 1.0),
}
