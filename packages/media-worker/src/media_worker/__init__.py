"""Media worker: HLS variant encoding, manifest publishing, and the processing queue loop."""
