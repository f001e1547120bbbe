"""YAML backed configuration.

Each cog gets its own group, named after the cog:

    prefix: "curator "
    token: ...
    permissions:
      approval_timeout: 300
      declarations:
        "object:game:create": allowed

Cogs register what they need in their constructor, nothing magic:

@dcog()
class SomeCog(Cog):
    def __init__(self, config):
        self.api_key = config.register("api_key")
        self.timeout = config.register("timeout", default=30, validator=positive)

Registering fills in defaults (and comments them), marks missing required
values with a comment, and raises InvalidConfig if anything registered is
missing or fails its validator. The file is then saved so the operator can
see what needs filling in.
"""
import io
import re

import ruamel.yaml


def snakify(name):
    """Group name for a cog class, CamelCase to snake_case."""
    s1 = re.sub('(.)([A-Z][a-z]+)', r'\1_\2', name)
    return re.sub('([a-z0-9])([A-Z])', r'\1_\2', s1).lower()


class InvalidConfig(Exception):
    pass


class ConfigEntry:
    """A registered value. Call it (or use .value) to read the current value."""

    def __init__(self, config, default=None, validator=None, path=None):
        self._config = config
        self._path = path
        self.default = default
        self.validator = validator

    @property
    def value(self):
        return self._config.get(self._path)

    def __call__(self):
        return self.value


class ConfigGroup:
    def __init__(self, config, path=None):
        self._config = config
        self._path = path or []
        self._entries = {}

    def register(self, value_name, default=None, validator=None):
        """Register config entry.

        Raises InvalidConfig if the loaded value is missing or invalid.
        """
        entry = ConfigEntry(
            self._config, default, validator, path=self._path + [value_name])
        self._entries[value_name] = entry
        if not self.validate():
            raise InvalidConfig("Invalid configuration for %s" % ".".join(entry._path))
        return entry

    def add_group(self, group_name):
        group = ConfigGroup(self._config, self._path + [group_name])
        self._entries[group_name] = group
        self.validate()
        return group

    def remove_group(self, group_name):
        del self._entries[group_name]
        self.validate()

    def validate(self):
        """Fill in defaults, flag missing and invalid values.

        Returns False if any registered value is missing or rejected by its
        validator.
        """
        data = self._config.get(self._path)
        valid = True

        for key, entry in self._entries.items():
            if key not in data or data[key] is None:
                if isinstance(entry, ConfigGroup):
                    data[key] = self._config._yaml.map()
                elif entry.default is not None:
                    data[key] = entry.default
                    data.yaml_add_eol_comment("Default value", key)
                else:
                    data[key] = None
                    data.yaml_add_eol_comment("Required value", key)
                    valid = False
                    continue

            if isinstance(entry, ConfigEntry) and entry.validator:
                try:
                    entry.validator(data[key])
                except (InvalidConfig, TypeError, ValueError) as e:
                    data.yaml_add_eol_comment("Invalid value: %s" % e, key)
                    valid = False
        return valid


class Configuration:
    def __init__(self):
        self._yaml = ruamel.yaml.YAML()
        self.root = ConfigGroup(self)

    def get(self, path):
        cur = self._data
        for crumb in path:
            cur = cur[crumb]
        return cur

    def _pruned(self):
        """Top level data, minus empty groups."""
        data = self._data.copy()
        for key, val in self._data.items():
            if isinstance(val, dict) and not val:
                del data[key]
        return data

    def dumps(self):
        buff = io.StringIO()
        self._yaml.dump(self._pruned(), buff)
        return buff.getvalue()


class StringConfiguration(Configuration):
    def __init__(self, string):
        super().__init__()
        self._data = self._yaml.load(string) or self._yaml.map()

    def load(self):
        pass

    def save(self):
        pass


class FileConfiguration(Configuration):
    def __init__(self, filename):
        super().__init__()
        self._filename = filename
        self._data = self._yaml.map()

    def load(self):
        try:
            with open(self._filename, encoding="utf8") as f:
                self._data = self._yaml.load(f.read()) or self._yaml.map()
        except FileNotFoundError:
            self._data = self._yaml.map()

    def save(self):
        with open(self._filename, 'w', encoding="utf8") as f:
            self._yaml.dump(self._pruned(), f)
