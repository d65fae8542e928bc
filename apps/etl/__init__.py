"""
ETL App - Inventory Spreadsheet Ingestion

Responsibilities:
- Parse the first worksheet of an uploaded .xlsx/.xlsm (or .csv) file
- Map free-form headers onto the canonical 23-field inventory schema
- Normalize units and labels (GHz, GB, SSD/HDD, Windows 11, HO/OS...)
- Validate records against the compliance rules (RAM, disk, OS, HO bandwidth)
- Score every record and compute batch statistics

Outputs:
- JobResult in the result cache: <CACHE_PREFIX>:etl:result:<job_id> (TTL ETL_RESULT_TTL)
- Job return value: {job_id, status, timestamp, statistics}
"""
