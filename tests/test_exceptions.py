import pickle

from ovsa.exceptions import InvalidThresholdsError, UnresolvedRowError, ValidationError


class TestExceptions:
    def test_validation_error_field(self):
        error = ValidationError("prob_a", "must be between 0 and 1")
        assert error.field == "prob_a"
        assert str(error) == "prob_a: must be between 0 and 1"
        assert isinstance(error, ValueError)

    def test_thresholds_member_prefix(self):
        assert str(InvalidThresholdsError("not increasing", member=2)) == "imputation 3: not increasing"
        assert str(InvalidThresholdsError("not increasing")) == "not increasing"

    def test_pickle_round_trip(self):
        errors = [
            ValidationError("shift_table", "must be finite"),
            InvalidThresholdsError("not increasing", member=0),
            UnresolvedRowError("non-finite score", member=1, scenario="mnar2", n_rows=3),
        ]
        for error in errors:
            restored = pickle.loads(pickle.dumps(error))
            assert type(restored) is type(error)
            assert str(restored) == str(error)

        restored = pickle.loads(pickle.dumps(errors[2]))
        assert restored.scenario == "mnar2"
        assert restored.n_rows == 3
