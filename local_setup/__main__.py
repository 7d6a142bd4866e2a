from local_setup.start import main

if __name__ == "__main__":  # pragma: no cover
    main()
