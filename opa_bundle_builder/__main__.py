"""Run the opa-bundle-builder command line tool."""

from opa_bundle_builder.tool.bundle_builder import main

if __name__ == "__main__":
    main()
