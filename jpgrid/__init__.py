"""Japanese grid feed ingestion: demand, spot prices, reserve margin, generation mix, settlement."""
