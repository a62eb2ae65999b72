"""Constants for Canadian census small-area processing."""

# Census vintages handled by the pipelines. Each intercensal interval runs from
# one vintage to the next on the earlier vintage's DA boundary.
CENSUS_VINTAGES = (2011, 2016, 2021)
CENSUS_INTERVAL_YEARS = 5

# Sex strata: total, female, male
SEX_STRATA = ("t", "f", "m")

# Stratum population columns of the harmonized census profile
# (total population for t, population by sex for f/m)
STRATUM_POPULATION_VARIABLES = {"t": "p_1_t", "f": "p_8_f", "m": "p_8_m"}

# Age group definitions used for age-standardization (19 groups)
AGE_GROUPS = {
    "0_4": range(0, 5),
    "5_9": range(5, 10),
    "10_14": range(10, 15),
    "15_19": range(15, 20),
    "20_24": range(20, 25),
    "25_29": range(25, 30),
    "30_34": range(30, 35),
    "35_39": range(35, 40),
    "40_44": range(40, 45),
    "45_49": range(45, 50),
    "50_54": range(50, 55),
    "55_59": range(55, 60),
    "60_64": range(60, 65),
    "65_69": range(65, 70),
    "70_74": range(70, 75),
    "75_79": range(75, 80),
    "80_84": range(80, 85),
    "85_89": range(85, 90),
    "90_plus": range(90, 121),
}

# Maximum age accepted in event and census person records
MAX_AGE = 120

# Rates are expressed per 100,000 population
RATE_MULTIPLIER = 100_000

# Two-sided 95% normal quantile for confidence intervals
Z_95 = 1.96

# Disclosure control: counts are published as multiples of this base
ROUNDING_BASE = 5

# Tolerances for integrity checks
WEIGHT_SUM_TOLERANCE = 1e-4  # per-source correspondence weight sum vs 1
MASS_CONSERVATION_RTOL = 1e-4  # relative tolerance on national totals

# Published national population totals (census counts) used to validate
# population-count reweighting on full national extracts
PUBLISHED_NATIONAL_POPULATION = {
    2011: 33_476_688,
    2016: 35_151_728,
    2021: 36_991_981,
}

# Input file names under --input-dir, per kind and census vintage. Profiles
# are released in regional chunks and matched by glob.
INPUT_FILES = {
    "attributes": {
        2011: "attribute_file_db11_2011_RAW.txt",
        2016: "attribute_file_db16_2016_RAW.csv",
        2021: "attribute_file_db21_2021_RAW.csv",
    },
    "correspondence": {
        2016: "correspondence_file_2016_RAW.csv",
        2021: "correspondence_file_2021_RAW.csv",
    },
    "profile": {
        2011: "census_profile_short_da11_*_2011_RAW.csv",
        2016: "census_profile_da16_*_2016_RAW.csv",
        2021: "census_profile_da21_*_2021_RAW.csv",
    },
    "nhs": {2011: "nhs_profile_da11_can_2011.csv"},
}

# Raw correspondence file columns, keyed by the newer vintage.
# Source = DA of the newer census, target = DA of the previous census.
CORRESPONDENCE_COLUMNS = {
    2016: {
        "source_id": "DAUID2016/ADIDU2016",
        "target_id": "DAUID2011/ADIDU2011",
        "area_percentage": "DA_area_percentage/AD_pourcentage_superficie",
    },
    2021: {
        "source_id": "DAUID2021_ADIDU2021",
        "target_id": "DAUID2016_ADIDU2016",
        "area_percentage": "DAAREAPRCNT_ADPRCNTSUP",
    },
}

# Attribute file (dissemination block level) columns per vintage.
# Keys are the harmonized names, values the raw column names.
ATTRIBUTE_COLUMNS = {
    2016: {
        "da_id": "DAuid/ADidu",
        "db_id": "DBuid/IDidu",
        "db_pop": "DBpop2016/IDpop2016",
        "pr_id": "PRuid/PRidu",
        "pr_name": "PRename/PRanom",
        "cd_id": "CDuid/DRidu",
        "csd_id": "CSDuid/SDRidu",
        "csd_name": "CSDname/SDRnom",
        "sactype": "SACtype/CSSgenre",
        "cma_id": "CMAuid/RMRidu",
        "ct_id": "CTuid/SRidu",
    },
    2021: {
        "da_id": "DAUID_ADIDU",
        "db_id": "DBUID_IDIDU",
        "db_pop": "DBPOP2021_IDPOP2021",
        "pr_id": "PRUID_PRIDU",
        "pr_name": "PRENAME_PRANOM",
        "cd_id": "CDUID_DRIDU",
        "csd_id": "CSDUID_SDRIDU",
        "csd_name": "CSDNAME_SDRNOM",
        "sactype": "SACTYPE_CSSGENRE",
        "cma_id": "CMAUID_RMRIDU",
        "ct_id": "CTUID_SRIDU",
    },
}

# 2011 attribute file is fixed-width text (codebook positions, 0-based,
# half-open as expected by pandas.read_fwf). First line is a header.
ATTRIBUTE_2011_FWF = {
    "db_id": (0, 10),
    "db_pop": (10, 18),
    "da_id": (48, 56),
    "pr_id": (110, 112),
    "pr_name": (112, 167),
    "cd_id": (426, 430),
    "csd_id": (473, 480),
    "csd_name": (480, 535),
    "sactype": (538, 539),
    "cma_id": (703, 706),
    "ct_id": (807, 817),
}

# Hierarchy columns kept (first value per DA) when collapsing DB -> DA
ATTRIBUTE_HIERARCHY_COLUMNS = [
    "pr_id",
    "pr_name",
    "cd_id",
    "csd_id",
    "csd_name",
    "sactype",
    "cma_id",
    "ct_id",
]

# Raw census profile columns (long layout, one row per geo x characteristic)
PROFILE_COLUMNS = {
    2016: {
        "geo_code": "GEO_CODE (POR)",
        "geo_level": "GEO_LEVEL",
        "prof_id": "Member ID: Profile of Dissemination Areas (2247)",
        "t": "Dim: Sex (3): Member ID: [1]: Total - Sex",
        "f": "Dim: Sex (3): Member ID: [3]: Female",
        "m": "Dim: Sex (3): Member ID: [2]: Male",
    },
    2021: {
        "geo_code": "ALT_GEO_CODE",
        "geo_level": "GEO_LEVEL",
        "prof_id": "CHARACTERISTIC_ID",
        "t": "C1_COUNT_TOTAL",
        "f": "C3_COUNT_WOMEN+",
        "m": "C2_COUNT_MEN+",
    },
}

# GEO_LEVEL value identifying dissemination areas in each profile release
PROFILE_DA_LEVEL = {2016: "4", 2021: "Dissemination area"}

# 2011 Census short-form profile: characteristics carry no id, only their
# position within each DA block. Position -> characteristic id.
PROFILE_2011_SHORT_FORM_COLUMNS = {
    "geo_code": "Geo_Code",
    "t": "Total",
    "f": "Female",
    "m": "Male",
}
PROFILE_2011_SHORT_FORM_IDS = {
    1: 1,
    6: 6,
    8: 8,
    9: 10,
    10: 11,
    11: 12,
    18: 90,
    19: 91,
    20: 92,
    21: 93,
    22: 94,
    23: 95,
    24: 96,
    25: 97,
    26: 98,
    27: 25,
    28: 26,
    29: 27,
    30: 28,
    31: 29,
    32: 40,
    34: 58,
    35: 59,
    39: 67,
    40: 68,
    41: 69,
    42: 70,
    48: 78,
    62: 86,
    63: 87,
    67: 88,
    108: 41,
    110: 47,
    119: 51,
    125: 89,
    126: 57,
    238: 383,
    242: 387,
}

# Census profile suppression / not-available symbols
PROFILE_MISSING_SYMBOLS = ("x", "X", "F", "..", "...")

# Placeholder geography codes meaning "unknown" or "not applicable".
# Converted to <NA> at ingest.
GEO_SENTINEL_CODES = {
    "da": ("00000000", "99999999"),
    "ct": ("0000000.00", "9999999.99"),
    "cma": ("000", "996", "997", "998", "999"),
    "pr": ("00", "99"),
}

# Collective dwelling codes whose residents are institutional and excluded
# from population denominators. Lists follow each census data dictionary and
# are kept per vintage.
INSTITUTIONAL_DWELLING_CODES = {
    2011: ("2", "3", "4", "5"),
    2016: ("2", "3", "4", "5", "6"),
    2021: ("2", "3", "4"),
}

# Province and territory labels (SGC codes)
PROVINCE_NAMES = {
    "10": "Newfoundland and Labrador",
    "11": "Prince Edward Island",
    "12": "Nova Scotia",
    "13": "New Brunswick",
    "24": "Quebec",
    "35": "Ontario",
    "46": "Manitoba",
    "47": "Saskatchewan",
    "48": "Alberta",
    "59": "British Columbia",
    "60": "Yukon",
    "61": "Northwest Territories",
    "62": "Nunavut",
}

# Census metropolitan area labels (largest CMAs; unlisted codes stay as codes)
CMA_NAMES = {
    "001": "St. John's",
    "205": "Halifax",
    "305": "Moncton",
    "310": "Saint John",
    "408": "Saguenay",
    "421": "Québec",
    "433": "Sherbrooke",
    "442": "Trois-Rivières",
    "462": "Montréal",
    "505": "Ottawa - Gatineau",
    "521": "Kingston",
    "529": "Peterborough",
    "532": "Oshawa",
    "535": "Toronto",
    "537": "Hamilton",
    "539": "St. Catharines - Niagara",
    "541": "Kitchener - Cambridge - Waterloo",
    "543": "Brantford",
    "550": "Guelph",
    "555": "London",
    "559": "Windsor",
    "568": "Barrie",
    "580": "Greater Sudbury",
    "595": "Thunder Bay",
    "602": "Winnipeg",
    "705": "Regina",
    "725": "Saskatoon",
    "810": "Calgary",
    "825": "Edmonton",
    "835": "Lethbridge",
    "915": "Kelowna",
    "932": "Abbotsford - Mission",
    "933": "Vancouver",
    "935": "Victoria",
}

# Output schemas (column order of released tables)
_BOUNDARY = {
    "name": "boundary",
    "type": "INTEGER",
    "description": "Census vintage of the DA boundary",
}

_GEO_SCHEMA = [
    {"name": "pr_id", "type": "STRING", "description": "Province/territory code"},
    {"name": "pr_name", "type": "STRING", "description": "Province/territory name"},
    {"name": "cd_id", "type": "STRING", "description": "Census division code"},
    {"name": "csd_id", "type": "STRING", "description": "Census subdivision code"},
    {"name": "csd_name", "type": "STRING", "description": "Census subdivision name"},
    {"name": "cma_id", "type": "STRING", "description": "CMA/CA code (nullable)"},
    {"name": "ct_id", "type": "STRING", "description": "Census tract code (nullable)"},
    {"name": "sactype", "type": "STRING", "description": "Statistical area type"},
]

POPULATION_COUNT_SCHEMA_DA = [
    {"name": "year", "type": "INTEGER", "description": "Reference year"},
    _BOUNDARY,
    {"name": "da_id", "type": "STRING", "description": "Dissemination area code"},
    *_GEO_SCHEMA,
    {"name": "population", "type": "INTEGER", "description": "Population count"},
]

POPULATION_COUNT_SCHEMA_CT = [
    {"name": "year", "type": "INTEGER", "description": "Reference year"},
    _BOUNDARY,
    {"name": "ct_id", "type": "STRING", "description": "Census tract code"},
    {"name": "population", "type": "INTEGER", "description": "Population count"},
]

CASDOHI_GEO_SCHEMA = [
    {"name": "year", "type": "INTEGER", "description": "Reference year"},
    _BOUNDARY,
    {"name": "da_id", "type": "STRING", "description": "Dissemination area code"},
    *_GEO_SCHEMA,
]

RATE_SCHEMA = [
    {"name": "geo_id", "type": "STRING", "description": "Geography code"},
    {"name": "year", "type": "INTEGER", "description": "Event year"},
    {"name": "sex", "type": "STRING", "description": "Sex stratum (t/f/m)"},
    {"name": "category", "type": "STRING", "description": "Outcome category"},
    {
        "name": "numerator",
        "type": "INTEGER",
        "description": "Event count, rounded to a multiple of 5",
    },
    {
        "name": "denominator",
        "type": "INTEGER",
        "description": "Population, rounded to a multiple of 5",
    },
    {"name": "rate", "type": "FLOAT", "description": "Age-standardized rate per 100k"},
    {"name": "standard_error", "type": "FLOAT", "description": "Standard error"},
    {"name": "ci_low", "type": "FLOAT", "description": "95% CI lower bound"},
    {"name": "ci_high", "type": "FLOAT", "description": "95% CI upper bound"},
]

OUTPUT_SCHEMAS = {
    "population_da": POPULATION_COUNT_SCHEMA_DA,
    "population_ct": POPULATION_COUNT_SCHEMA_CT,
    "casdohi": CASDOHI_GEO_SCHEMA,
    "event_rates": RATE_SCHEMA,
}
