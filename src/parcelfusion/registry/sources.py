"""
Source Registry

Definitions of the supported providers. Field mappings are pure data: the
names each provider uses for the canonical parcel fields.
"""
from typing import Dict, List

from src.parcelfusion.exceptions import ConfigurationError
from src.parcelfusion.models.source_config import SourceDefinition

_DEFINITIONS = [
    {
        "source_id": "sf-urban",
        "name": "San Francisco Buildings",
        "adapter": {
            "kind": "socrata",
            "url": "https://data.sfgov.org/resource/wv5m-vpq2.json",
            "fields": [
                "parcel_number", "year_property_built", "use_definition", "the_geom",
                "analysis_neighborhood", "property_location", "property_area",
                "number_of_stories", "number_of_units",
            ],
            "where": "closed_roll_year='2024' AND the_geom IS NOT NULL",
        },
        "normalization": {
            "field_mapping": {
                "id": "parcel_number",
                "year_built": "year_property_built",
                "land_use": "use_definition",
                "address": "property_location",
                "area": "property_area",
                "stories": "number_of_stories",
                "units": "number_of_units",
                "geometry": "the_geom",
            },
            "area_unit": "sqft",
        },
        "clustering": {"measure": "units"},
        "expected_count": 212000,
    },
    {
        "source_id": "campbell",
        "name": "Campbell Parcels",
        "adapter": {
            "kind": "arcgis",
            "url": "https://gis.campbellca.gov/arcgis/rest/services/BaseFeatureLayers/ParcelsPublic/FeatureServer/0/query",
            "out_fields": ["APN", "YEAR_BUILT", "EFF_YEAR_BUILT", "UseCodeDescription", "SITUSFULL", "TTL_SQFT_ALL"],
        },
        "normalization": {
            "field_mapping": {
                "id": "APN",
                "year_built": ["YEAR_BUILT", "EFF_YEAR_BUILT"],
                "effective_year": "EFF_YEAR_BUILT",
                "land_use": "UseCodeDescription",
                "address": "SITUSFULL",
                "area": "TTL_SQFT_ALL",
            },
            "area_unit": "sqft",
        },
        "expected_count": 15000,
    },
    {
        "source_id": "palo-alto",
        "name": "Palo Alto Parcels",
        "adapter": {
            "kind": "arcgis",
            "url": "https://gis.cityofpaloalto.org/server/rest/services/Parcel/ParcelReport/MapServer/16/query",
            "out_fields": ["APN", "YEARBUILT", "EFFECTIVEYEARBUILT", "LANDUSEGIS", "ADDRESSNUMBER", "STREET", "LOTSIZE"],
        },
        "normalization": {
            "field_mapping": {
                "id": "APN",
                "year_built": ["YEARBUILT", "EFFECTIVEYEARBUILT"],
                "effective_year": "EFFECTIVEYEARBUILT",
                "land_use": "LANDUSEGIS",
                "address_parts": ["ADDRESSNUMBER", "STREET"],
                "area": "LOTSIZE",
            },
            "area_unit": "sqft",
        },
        "expected_count": 30000,
    },
    {
        "source_id": "solano",
        "name": "Solano County Parcels",
        "adapter": {
            "kind": "arcgis",
            "url": "https://services2.arcgis.com/SCn6czzcqKAFwdGU/arcgis/rest/services/Parcels_Public_Aumentum/FeatureServer/0/query",
            "out_fields": [
                "parcelid", "yrbuilt", "sitecity", "sitenum", "siteroad", "usecode",
                "use_desc", "lotsize", "total_area", "stories",
            ],
            "where": "yrbuilt > 1800",
        },
        "normalization": {
            "field_mapping": {
                "id": "parcelid",
                "year_built": "yrbuilt",
                "land_use": "use_desc",
                "address_parts": ["sitenum", "siteroad"],
                "city": "sitecity",
                "area": "total_area",
                "stories": "stories",
            },
            "area_unit": "sqft",
        },
        "expected_count": 155000,
    },
    {
        "source_id": "livermore",
        "name": "Livermore Parcels",
        "adapter": {
            "kind": "arcgis",
            "url": "https://gis.cityoflivermore.net/arcgis/rest/services/Parcels/FeatureServer/0/query",
            "out_fields": [
                "APN", "YrBuilt", "EffYr", "SitusNum", "SitusStreet", "SitusCity",
                "LandUseDescription", "LotSize", "BldgArea", "Stories",
            ],
        },
        "normalization": {
            "field_mapping": {
                "id": "APN",
                "year_built": ["YrBuilt", "EffYr"],
                "effective_year": "EffYr",
                "land_use": "LandUseDescription",
                "address_parts": ["SitusNum", "SitusStreet"],
                "city": "SitusCity",
                "area": "BldgArea",
                "stories": "Stories",
            },
            "area_unit": "sqft",
        },
        "expected_count": 52000,
    },
    {
        "source_id": "la-county",
        "name": "LA County Parcels",
        "adapter": {
            "kind": "arcgis",
            "url": "https://services3.arcgis.com/GVgbJbqm8hXASVYi/arcgis/rest/services/LA_County_Parcels/FeatureServer/0/query",
            "out_fields": [
                "APN", "YearBuilt1", "EffectiveYear1", "UseDescription",
                "SitusFullAddress", "SitusCity", "SQFTmain1", "Units1",
            ],
        },
        "normalization": {
            "field_mapping": {
                "id": "APN",
                "year_built": ["YearBuilt1", "EffectiveYear1"],
                "effective_year": "EffectiveYear1",
                "land_use": "UseDescription",
                "address": "SitusFullAddress",
                "city": "SitusCity",
                "area": "SQFTmain1",
                "units": "Units1",
            },
            "area_unit": "sqft",
        },
        "expected_count": 2400000,
        "detail_format": "ndjson",
    },
    {
        "source_id": "nyc-pluto",
        "name": "NYC PLUTO Tax Lots",
        "adapter": {
            "kind": "socrata",
            "url": "https://data.cityofnewyork.us/resource/64uk-42ks.json",
            "fields": [
                "bbl", "yearbuilt", "landuse", "address", "numfloors",
                "unitsres", "bldgarea", "latitude", "longitude",
            ],
        },
        "normalization": {
            "field_mapping": {
                "id": "bbl",
                "year_built": "yearbuilt",
                "land_use": "landuse",
                "address": "address",
                "area": "bldgarea",
                "stories": "numfloors",
                "units": "unitsres",
                "longitude": "longitude",
                "latitude": "latitude",
            },
            "area_unit": "sqft",
            # PLUTO land use codes
            "land_use_mapping": {
                "01": "single_family", "02": "multi_family", "03": "multi_family",
                "04": "mixed_use", "05": "office", "06": "industrial",
                "08": "government", "11": "vacant",
            },
        },
        # BBLs have no separator; borough + block is the first 6 digits
        "clustering": {"block_prefix_length": 6, "measure": "units"},
        "expected_count": 857000,
        "detail_format": "ndjson",
    },
    {
        "source_id": "clark-county",
        "name": "Clark County Parcels",
        "adapter": {
            "kind": "arcgis",
            "url": "https://maps.clarkcountynv.gov/arcgis/rest/services/Assessor/Layers/MapServer/1/query",
            "out_fields": ["APN", "PARCELTYPE", "Label_Class", "ASSR_ACRES"],
        },
        "normalization": {
            "field_mapping": {
                "id": "APN",
                "land_use": "PARCELTYPE",
                "area": "ASSR_ACRES",
            },
            "area_unit": "acres",
            # Assessor parcel type codes
            "land_use_mapping": {"0": "single_family", "1": "retail", "2": "industrial"},
        },
        "dating": {
            "exact_lookup": {
                "path": "clark-county/added-parcels.geojson",
                "id_field": "apn",
                "date_field": "add_dt",
                "year_range": [2000, 2030],
            },
            "boundaries": {
                "path": "clark-county/subdivisions.geojson",
                "name_field": "SubName",
                "document_field": "Doc_Num",
                "serial_field": "Map_Book",
            },
            # Closer to the historic core is older; a heuristic, not history
            "distance_model": {
                "centers": [
                    {"name": "downtown", "lng": -115.1398, "lat": 36.1699},
                    {"name": "strip", "lng": -115.1728, "lat": 36.1147},
                ],
                "rings": [
                    {"max_km": 2, "start_year": 1950, "span": 20},
                    {"max_km": 5, "start_year": 1960, "span": 20},
                    {"max_km": 15, "start_year": 1970, "span": 30},
                    {"max_km": 30, "start_year": 1990, "span": 25},
                    {"max_km": None, "start_year": 2000, "span": 20},
                ],
            },
        },
        "clustering": {"grid_size": 0.003},
        "expected_count": 700000,
        "detail_format": "ndjson",
    },
]

SOURCE_REGISTRY: Dict[str, SourceDefinition] = {
    definition.source_id: definition
    for definition in (SourceDefinition(**raw) for raw in _DEFINITIONS)
}


def get_source(source_id: str) -> SourceDefinition:
    """
    Look up a source definition.

    Raises:
        ConfigurationError: If the source is not registered
    """
    try:
        return SOURCE_REGISTRY[source_id]
    except KeyError:
        raise ConfigurationError(
            f"Unknown source: {source_id}. Known sources: {', '.join(sorted(SOURCE_REGISTRY))}"
        ) from None


def list_sources() -> List[str]:
    return sorted(SOURCE_REGISTRY)
