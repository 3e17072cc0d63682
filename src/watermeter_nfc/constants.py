# src/watermeter_nfc/constants.py
# Tag layout, TLV markers and report keys shared by the reader and the decoder.

# --- Type 2 tag memory ---
PAGE_SIZE = 4                 # bytes per page
PAGES_PER_READ = 4            # one READ returns 4 pages (16 bytes)
CC_PAGE = 0x03                # capability container
DATA_START_PAGE = 0x04        # first user page, TLV area starts here
MAX_PAGE = 0xFF

# --- TLV ---
TLV_NDEF = 0x03
TLV_LENGTH_EXTENDED = 0xFF

EXTENDED_LENGTH_MIN = 255     # inclusive
EXTENDED_LENGTH_MAX = 924
INNER_TLV_LENGTH_MAX = 100    # second TLV right after 03 FF

# --- NDEF record header ---
NDEF_FLAG_MB = 0x80
NDEF_FLAG_ME = 0x40
NDEF_FLAG_CF = 0x20
NDEF_FLAG_SR = 0x10
NDEF_FLAG_IL = 0x08
NDEF_TNF_MASK = 0x07
NDEF_TNF_MAX = 0x06
NDEF_TNF_WELL_KNOWN = 0x01

RECORD_TYPE_LENGTH_MAX = 8
RECORD_PAYLOAD_LENGTH_MAX = 200   # exclusive

# --- Tag kinds (as reported to the publisher) ---
TAG_KIND_TYPE_2 = "NFC Forum Type 2"
TAG_KIND_MIFARE_CLASSIC = "Mifare Classic"

# --- Report text ---
REPORT_LINE_SEP = "\r\n"
REPORT_CRC_MARKER = "CRC"
REPORT_FIELD_KEYS = ("Vol", "Temp", "FVol", "RVol", "KVol", "KDate", "Time")
REPORT_KEY_VOLUME = "Vol"
REPORT_KEY_SERIAL = "S/N"
REPORT_KEY_BATTERY = "Battery"
VOLUME_UNIT = "m³"
VOLUME_DECIMALS = 3
