from engagement_timeline.models.feed import SessionAttendance, FeatureObservation, ModeChange
